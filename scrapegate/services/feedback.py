"""Sinks for scrape outcomes: selector-health signals and the scrape event log."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrapegate.config import settings
from scrapegate.core.metrics import selector_outcomes_total
from scrapegate.core.redis import ResilientRedis
from scrapegate.models.scraper_event import ScraperEvent
from scrapegate.services.selector_extraction import SelectorOutcome

logger = logging.getLogger(__name__)


class SelectorOutcomeSink(ABC):
    """Receives per-field hit/miss signals for an external selector healer."""

    @abstractmethod
    async def record(self, outcomes: list[SelectorOutcome]) -> None:
        pass


class RedisSelectorOutcomeSink(SelectorOutcomeSink):
    """Pushes outcomes onto a capped Redis list.

    Redis key: SELECTOR_OUTCOME_KEY (newest first, trimmed to SELECTOR_OUTCOME_MAX)
    """

    def __init__(self, redis: ResilientRedis, key: str | None = None, max_len: int | None = None):
        self._redis = redis
        self._key = key or settings.SELECTOR_OUTCOME_KEY
        self._max_len = max_len or settings.SELECTOR_OUTCOME_MAX

    async def record(self, outcomes: list[SelectorOutcome]) -> None:
        if not outcomes:
            return
        now = datetime.now(timezone.utc).isoformat()
        payloads = [json.dumps({**asdict(o), "recorded_at": now}) for o in outcomes]
        await self._redis.lpush(self._key, *payloads)
        await self._redis.ltrim(self._key, 0, self._max_len - 1)
        for o in outcomes:
            selector_outcomes_total.labels(status="hit" if o.success else "miss").inc()


@dataclass
class ScrapeEventRecord:
    url: str
    engine: str
    success: bool
    latency_ms: int | None = None
    content_length: int | None = None
    error_message: str | None = None
    tenant_id: str | None = None
    workspace_id: str | None = None
    user_id: str | None = None
    metadata: dict | None = None


class ScrapeEventStore:
    """Writes one scraper_events row per scrape."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, event: ScrapeEventRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                ScraperEvent(
                    organization_id=event.tenant_id,
                    workspace_id=event.workspace_id,
                    user_id=event.user_id,
                    url=event.url,
                    engine=event.engine,
                    success=event.success,
                    latency_ms=event.latency_ms,
                    content_length=event.content_length,
                    error_message=event.error_message,
                    metadata_=event.metadata,
                )
            )
            await session.commit()

    async def recent(self, limit: int = 50, tenant_id: str | None = None) -> list[dict]:
        """Newest events in one scope; tenant_id None is the untenanted scope only."""
        stmt = select(ScraperEvent).order_by(ScraperEvent.created_at.desc()).limit(limit)
        if tenant_id is not None:
            stmt = stmt.where(ScraperEvent.organization_id == tenant_id)
        else:
            stmt = stmt.where(ScraperEvent.organization_id.is_(None))
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            {
                "id": row.id,
                "url": row.url,
                "engine": row.engine,
                "success": row.success,
                "latency_ms": row.latency_ms,
                "content_length": row.content_length,
                "error_message": row.error_message,
                "created_at": row.created_at,
            }
            for row in rows
        ]
