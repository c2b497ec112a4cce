"""SQLAlchemy-backed proxy store (proxy_pools, proxy_logs, proxy_scores)."""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrapegate.models.proxy import ProxyPoolEntry, ProxyScoreEntry, ProxyUsageLog
from scrapegate.services.proxy import (
    ProxyRecord,
    ProxyScore,
    ProxySelection,
    ProxyStore,
    ProxyUsageEvent,
)

logger = logging.getLogger(__name__)


def _to_record(row: ProxyPoolEntry) -> ProxyRecord:
    return ProxyRecord(
        id=row.id,
        host=row.host,
        port=row.port,
        protocol=row.protocol,
        proxy_type=row.type,
        username=row.username,
        password=row.password,
        country=row.country,
        city=row.city,
        tenant_id=row.organization_id,
        is_active=row.is_active,
        name=row.name,
        provider=row.provider,
        max_concurrent=row.max_concurrent,
    )


def _to_score(row: ProxyScoreEntry) -> ProxyScore:
    return ProxyScore(
        proxy_id=row.proxy_id,
        score=row.score,
        success_rate=row.success_rate,
        ban_rate=row.ban_rate,
        avg_latency_ms=row.avg_latency_ms,
        total_requests=row.total_requests,
        successful_requests=row.successful_requests,
        failed_requests=row.failed_requests,
        banned_requests=row.banned_requests,
        last_used_at=row.last_used_at,
        last_scored_at=row.last_scored_at,
    )


class SqlProxyStore(ProxyStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_candidates(
        self, selection: ProxySelection, limit: int
    ) -> list[tuple[ProxyRecord, int | None]]:
        stmt = (
            select(ProxyPoolEntry, ProxyScoreEntry.score)
            .outerjoin(ProxyScoreEntry, ProxyScoreEntry.proxy_id == ProxyPoolEntry.id)
            .where(ProxyPoolEntry.is_active == True)  # noqa: E712
        )
        if selection.tenant_id:
            stmt = stmt.where(ProxyPoolEntry.organization_id == selection.tenant_id)
        else:
            stmt = stmt.where(ProxyPoolEntry.organization_id.is_(None))
        if selection.country:
            stmt = stmt.where(ProxyPoolEntry.country == selection.country)
        if selection.city:
            stmt = stmt.where(ProxyPoolEntry.city == selection.city)
        if selection.proxy_type:
            stmt = stmt.where(ProxyPoolEntry.type == selection.proxy_type)
        if selection.exclude_ids:
            stmt = stmt.where(ProxyPoolEntry.id.not_in(selection.exclude_ids))
        stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [(_to_record(entry), score) for entry, score in rows]

    async def get_proxy(self, proxy_id: str) -> ProxyRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ProxyPoolEntry, proxy_id)
        return _to_record(row) if row else None

    async def append_usage(self, event: ProxyUsageEvent) -> None:
        async with self._session_factory() as session:
            session.add(
                ProxyUsageLog(
                    proxy_id=event.proxy_id,
                    organization_id=event.tenant_id,
                    workspace_id=event.workspace_id,
                    user_id=event.user_id,
                    url=event.url,
                    status=event.status,
                    status_code=event.status_code,
                    latency_ms=event.latency_ms,
                    ban_reason=event.ban_reason,
                    error_message=event.error_message,
                    metadata_=event.metadata,
                    created_at=event.created_at,
                )
            )
            await session.commit()

    async def recent_usage(self, proxy_id: str, limit: int) -> list[ProxyUsageEvent]:
        stmt = (
            select(ProxyUsageLog)
            .where(ProxyUsageLog.proxy_id == proxy_id)
            .order_by(ProxyUsageLog.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            ProxyUsageEvent(
                proxy_id=row.proxy_id,
                url=row.url,
                status=row.status,
                status_code=row.status_code,
                latency_ms=row.latency_ms,
                ban_reason=row.ban_reason,
                error_message=row.error_message,
                tenant_id=row.organization_id,
                workspace_id=row.workspace_id,
                user_id=row.user_id,
                metadata=row.metadata_,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def get_score(self, proxy_id: str) -> ProxyScore | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(ProxyScoreEntry).where(ProxyScoreEntry.proxy_id == proxy_id)
            )
        return _to_score(row) if row else None

    async def upsert_score(self, score: ProxyScore, tenant_id: str | None) -> None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(ProxyScoreEntry).where(ProxyScoreEntry.proxy_id == score.proxy_id)
            )
            if row is None:
                row = ProxyScoreEntry(proxy_id=score.proxy_id, organization_id=tenant_id)
                session.add(row)
            row.score = score.score
            row.success_rate = score.success_rate
            row.ban_rate = score.ban_rate
            row.avg_latency_ms = score.avg_latency_ms
            row.total_requests = score.total_requests
            row.successful_requests = score.successful_requests
            row.failed_requests = score.failed_requests
            row.banned_requests = score.banned_requests
            row.last_used_at = score.last_used_at
            row.last_scored_at = score.last_scored_at
            await session.commit()

    async def add_proxy(self, proxy: ProxyRecord, metadata: dict | None = None) -> ProxyRecord:
        entry = ProxyPoolEntry(
            organization_id=proxy.tenant_id,
            name=proxy.name or f"{proxy.host}:{proxy.port}",
            type=proxy.proxy_type,
            provider=proxy.provider,
            protocol=proxy.protocol,
            host=proxy.host,
            port=proxy.port,
            username=proxy.username,
            password=proxy.password,
            country=proxy.country,
            city=proxy.city,
            is_active=proxy.is_active,
            max_concurrent=proxy.max_concurrent,
            metadata_=metadata,
        )
        if proxy.id:
            entry.id = proxy.id
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
            return _to_record(entry)

    async def set_active(self, proxy_id: str, is_active: bool) -> bool:
        async with self._session_factory() as session:
            row = await session.get(ProxyPoolEntry, proxy_id)
            if row is None:
                return False
            row.is_active = is_active
            await session.commit()
        return True

    async def remove_proxy(self, proxy_id: str) -> bool:
        async with self._session_factory() as session:
            row = await session.get(ProxyPoolEntry, proxy_id)
            if row is None:
                return False
            # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled
            await session.execute(
                delete(ProxyUsageLog).where(ProxyUsageLog.proxy_id == proxy_id)
            )
            await session.execute(
                delete(ProxyScoreEntry).where(ProxyScoreEntry.proxy_id == proxy_id)
            )
            await session.delete(row)
            await session.commit()
        logger.info(f"Removed proxy {proxy_id}")
        return True

    async def list_proxies(
        self, tenant_id: str | None
    ) -> list[tuple[ProxyRecord, ProxyScore | None]]:
        stmt = select(ProxyPoolEntry, ProxyScoreEntry).outerjoin(
            ProxyScoreEntry, ProxyScoreEntry.proxy_id == ProxyPoolEntry.id
        )
        if tenant_id:
            stmt = stmt.where(ProxyPoolEntry.organization_id == tenant_id)
        else:
            stmt = stmt.where(ProxyPoolEntry.organization_id.is_(None))
        stmt = stmt.order_by(ProxyPoolEntry.created_at)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            (_to_record(entry), _to_score(score) if score else None)
            for entry, score in rows
        ]
