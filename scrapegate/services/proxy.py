"""Scored proxy pool with weighted rotation and usage feedback.

Every use of a proxy is reported back as a usage event; the proxy's score
is recomputed from its most recent events and drives the weighted-random
selection of the next proxy. Proxies without history start at a neutral
default score.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

import httpx

from scrapegate.config import settings
from scrapegate.core.exceptions import ProxyNotFoundError
from scrapegate.core.metrics import proxy_selections_total, proxy_usage_total
from scrapegate.schemas.scrape import ScrapeContext

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_TIMEOUT = "timeout"
STATUS_BANNED = "banned"

TransportFactory = Callable[[str | None], httpx.AsyncBaseTransport]


def proxied_transport(proxy_url: str | None) -> httpx.AsyncBaseTransport:
    """httpx transport routed through proxy_url, or direct when None."""
    return httpx.AsyncHTTPTransport(proxy=proxy_url)


@dataclass
class ProxyRecord:
    id: str
    host: str
    port: int
    protocol: str = "http"  # http, https, socks5
    proxy_type: str = "datacenter"  # residential, datacenter, mobile, isp
    username: str | None = None
    password: str | None = None
    country: str | None = None
    city: str | None = None
    tenant_id: str | None = None  # None = global pool
    is_active: bool = True
    name: str = ""
    provider: str | None = None
    max_concurrent: int = 10

    def to_httpx(self) -> str:
        """Proxy URL for httpx."""
        if self.username and self.password:
            return f"{self.protocol}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"

    def to_playwright(self) -> dict:
        """Proxy settings for a Playwright browser context."""
        result = {"server": f"{self.protocol}://{self.host}:{self.port}"}
        if self.username:
            result["username"] = self.username
        if self.password:
            result["password"] = self.password
        return result

    def masked(self) -> str:
        """Display form with credentials hidden."""
        if self.username:
            return f"{self.protocol}://{self.username[:2]}***:***@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass
class ProxyScore:
    proxy_id: str
    score: int
    success_rate: int
    ban_rate: int
    avg_latency_ms: int | None
    total_requests: int
    successful_requests: int
    failed_requests: int
    banned_requests: int
    last_used_at: datetime | None = None
    last_scored_at: datetime | None = None


@dataclass
class ProxyUsageEvent:
    proxy_id: str
    url: str
    status: str  # success, failed, timeout, banned
    status_code: int | None = None
    latency_ms: int | None = None
    ban_reason: str | None = None
    error_message: str | None = None
    tenant_id: str | None = None
    workspace_id: str | None = None
    user_id: str | None = None
    metadata: dict | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ProxyUsageResult:
    """What the caller observed while using a proxy."""

    url: str
    success: bool
    status_code: int | None = None
    latency_ms: int | None = None
    ban_reason: str | None = None
    error_message: str | None = None

    def status(self) -> str:
        if self.success:
            return STATUS_SUCCESS
        if self.ban_reason:
            return STATUS_BANNED
        if self.error_message and "timeout" in self.error_message.lower():
            return STATUS_TIMEOUT
        return STATUS_FAILED


@dataclass
class ProxySelection:
    tenant_id: str | None = None
    country: str | None = None
    city: str | None = None
    proxy_type: str | None = None
    min_score: int | None = None
    exclude_ids: list[str] = field(default_factory=list)


class ProxyStore(ABC):
    """Persistence for proxies, their usage log and their scores."""

    @abstractmethod
    async def list_candidates(
        self, selection: ProxySelection, limit: int
    ) -> list[tuple[ProxyRecord, int | None]]:
        """Active proxies matching the filters, with their score if any."""

    @abstractmethod
    async def get_proxy(self, proxy_id: str) -> ProxyRecord | None:
        pass

    @abstractmethod
    async def append_usage(self, event: ProxyUsageEvent) -> None:
        pass

    @abstractmethod
    async def recent_usage(self, proxy_id: str, limit: int) -> list[ProxyUsageEvent]:
        """Most recent usage events, newest first."""

    @abstractmethod
    async def get_score(self, proxy_id: str) -> ProxyScore | None:
        pass

    @abstractmethod
    async def upsert_score(self, score: ProxyScore, tenant_id: str | None) -> None:
        pass

    @abstractmethod
    async def add_proxy(self, proxy: ProxyRecord, metadata: dict | None = None) -> ProxyRecord:
        pass

    @abstractmethod
    async def set_active(self, proxy_id: str, is_active: bool) -> bool:
        pass

    @abstractmethod
    async def remove_proxy(self, proxy_id: str) -> bool:
        pass

    @abstractmethod
    async def list_proxies(
        self, tenant_id: str | None
    ) -> list[tuple[ProxyRecord, ProxyScore | None]]:
        pass


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def latency_bonus(avg_latency_ms: float | None) -> int:
    if avg_latency_ms is None:
        return 0
    if avg_latency_ms < 500:
        return 20
    if avg_latency_ms < 1000:
        return 15
    if avg_latency_ms < 2000:
        return 10
    if avg_latency_ms < 5000:
        return 5
    return 0


def compute_proxy_score(proxy_id: str, events: list[ProxyUsageEvent]) -> ProxyScore:
    """Score a proxy from its recent usage events.

    composite = success_rate * 0.7 - ban_rate * 0.3 + latency bonus,
    rounded and clamped to [0, 100].
    """
    now = datetime.now(timezone.utc)
    total = len(events)
    if total == 0:
        return ProxyScore(
            proxy_id=proxy_id,
            score=settings.PROXY_DEFAULT_SCORE,
            success_rate=0,
            ban_rate=0,
            avg_latency_ms=None,
            total_requests=0,
            successful_requests=0,
            failed_requests=0,
            banned_requests=0,
            last_scored_at=now,
        )

    successful = sum(1 for e in events if e.status == STATUS_SUCCESS)
    banned = sum(1 for e in events if e.status == STATUS_BANNED)
    failed = total - successful - banned

    success_rate = _round_half_up(successful / total * 100)
    ban_rate = _round_half_up(banned / total * 100)

    latencies = [e.latency_ms for e in events if e.latency_ms is not None]
    avg_latency = sum(latencies) / len(latencies) if latencies else None

    composite = success_rate * 0.7 - ban_rate * 0.3 + latency_bonus(avg_latency)
    score = max(0, min(100, _round_half_up(composite)))

    return ProxyScore(
        proxy_id=proxy_id,
        score=score,
        success_rate=success_rate,
        ban_rate=ban_rate,
        avg_latency_ms=_round_half_up(avg_latency) if avg_latency is not None else None,
        total_requests=total,
        successful_requests=successful,
        failed_requests=failed,
        banned_requests=banned,
        last_used_at=max(e.created_at for e in events),
        last_scored_at=now,
    )


def weighted_choice(candidates: list[tuple[ProxyRecord, int]]) -> ProxyRecord:
    """Pick a proxy with probability proportional to its score.

    Falls back to a uniform pick when every weight is zero.
    """
    total = sum(weight for _, weight in candidates)
    if total <= 0:
        return random.choice(candidates)[0]

    r = random.random() * total
    for proxy, weight in candidates:
        if r < weight:
            return proxy
        r -= weight

    # Float drift can leave r == remaining weight on the last step
    return candidates[-1][0]


class ProxyPoolManager:
    """Selects proxies by score and folds usage reports back into scores."""

    def __init__(
        self,
        store: ProxyStore,
        transport_factory: TransportFactory = proxied_transport,
    ):
        self._store = store
        self._transport_factory = transport_factory

    async def select(self, selection: ProxySelection) -> ProxyRecord | None:
        candidates = await self._store.list_candidates(
            selection, settings.PROXY_CANDIDATE_LIMIT
        )
        scored = [
            (proxy, score if score is not None else settings.PROXY_DEFAULT_SCORE)
            for proxy, score in candidates
            if proxy.id not in selection.exclude_ids
        ]
        if selection.min_score is not None:
            scored = [(p, s) for p, s in scored if s >= selection.min_score]

        if not scored:
            proxy_selections_total.labels(result="empty").inc()
            logger.info(
                f"No proxy available (tenant={selection.tenant_id}, "
                f"country={selection.country}, type={selection.proxy_type}, "
                f"excluded={len(selection.exclude_ids)})"
            )
            return None

        scored.sort(key=lambda item: item[1], reverse=True)
        proxy = weighted_choice(scored)
        proxy_selections_total.labels(result="selected").inc()
        logger.debug(f"Selected proxy {proxy.masked()} from {len(scored)} candidates")
        return proxy

    async def get_by_id(self, proxy_id: str) -> ProxyRecord | None:
        """Return the proxy only if it exists and is active."""
        proxy = await self._store.get_proxy(proxy_id)
        if proxy is None or not proxy.is_active:
            return None
        return proxy

    async def report(
        self,
        proxy_id: str,
        result: ProxyUsageResult,
        context: ScrapeContext | None = None,
    ) -> None:
        """Record a usage event and refresh the proxy's score.

        Never raises: scoring is telemetry and must not fail a scrape.
        """
        context = context or ScrapeContext()
        event = ProxyUsageEvent(
            proxy_id=proxy_id,
            url=result.url,
            status=result.status(),
            status_code=result.status_code,
            latency_ms=result.latency_ms,
            ban_reason=result.ban_reason,
            error_message=result.error_message,
            tenant_id=context.tenant_id,
            workspace_id=context.workspace_id,
            user_id=context.user_id,
        )
        try:
            await self._store.append_usage(event)
            events = await self._store.recent_usage(proxy_id, settings.PROXY_SCORE_WINDOW)
            score = compute_proxy_score(proxy_id, events)
            await self._store.upsert_score(score, context.tenant_id)
            proxy_usage_total.labels(status=event.status).inc()
        except Exception as e:
            logger.error(f"Failed to record usage for proxy {proxy_id}: {e}")

    async def validate(
        self,
        proxy_id: str,
        test_url: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        """Issue a real request through the proxy and record the outcome."""
        proxy = await self.get_scoped(proxy_id, tenant_id)

        url = test_url or settings.PROXY_VALIDATION_URL
        start = time.monotonic()
        status_code = None
        error = None
        try:
            transport = self._transport_factory(proxy.to_httpx())
            async with httpx.AsyncClient(
                timeout=settings.PROXY_VALIDATION_TIMEOUT / 1000,
                transport=transport,
            ) as client:
                resp = await client.get(url)
                status_code = resp.status_code
                ok = resp.status_code < 400
                if not ok:
                    error = f"HTTP {resp.status_code}"
        except httpx.TimeoutException as e:
            ok, error = False, f"timeout: {e}"
        except httpx.HTTPError as e:
            ok, error = False, str(e) or type(e).__name__
        except (ImportError, ValueError) as e:
            ok, error = False, f"proxy transport unavailable: {e}"

        latency_ms = int((time.monotonic() - start) * 1000)
        await self.report(
            proxy_id,
            ProxyUsageResult(
                url=url,
                success=ok,
                status_code=status_code,
                latency_ms=latency_ms,
                error_message=error,
            ),
            ScrapeContext(tenant_id=proxy.tenant_id),
        )
        logger.info(f"Proxy {proxy.masked()} validation {'passed' if ok else 'failed'}")
        return ok

    # --- Administration ---

    async def add_proxy(self, proxy: ProxyRecord, metadata: dict | None = None) -> ProxyRecord:
        created = await self._store.add_proxy(proxy, metadata)
        logger.info(f"Added proxy {created.masked()} ({created.proxy_type})")
        return created

    async def get_scoped(self, proxy_id: str, tenant_id: str | None) -> ProxyRecord:
        """Return the proxy if it belongs to tenant_id (None = global pool).

        A proxy owned by another scope is reported as missing.
        """
        proxy = await self._store.get_proxy(proxy_id)
        if proxy is None or proxy.tenant_id != tenant_id:
            raise ProxyNotFoundError(proxy_id)
        return proxy

    async def set_active(
        self, proxy_id: str, is_active: bool, tenant_id: str | None = None
    ) -> None:
        await self.get_scoped(proxy_id, tenant_id)
        if not await self._store.set_active(proxy_id, is_active):
            raise ProxyNotFoundError(proxy_id)

    async def remove_proxy(self, proxy_id: str, tenant_id: str | None = None) -> None:
        await self.get_scoped(proxy_id, tenant_id)
        if not await self._store.remove_proxy(proxy_id):
            raise ProxyNotFoundError(proxy_id)

    async def get_stats(self, proxy_id: str, tenant_id: str | None = None) -> ProxyScore:
        await self.get_scoped(proxy_id, tenant_id)
        score = await self._store.get_score(proxy_id)
        return score or compute_proxy_score(proxy_id, [])

    async def list_proxies(
        self, tenant_id: str | None
    ) -> list[tuple[ProxyRecord, ProxyScore | None]]:
        return await self._store.list_proxies(tenant_id)
