"""Fetch/extract orchestration.

A scrape runs as: route -> acquire proxy -> fetch loop -> extract -> report.

The fetch loop makes up to retries + 1 attempts. Ban signals (403/429
through a proxy) burn the proxy for the rest of the request and draw a
replacement; timeouts, network errors, 5xx and browser failures do the
same and back off linearly (retry_delay x attempt number). Any other 4xx
and non-HTML responses end the request immediately.

Proxy scoring, selector outcomes and the scrape event log are submitted
to the event dispatcher and never awaited here.
"""

import asyncio
import base64
import functools
import logging
import time
from dataclasses import dataclass

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from scrapegate.core.exceptions import (
    BlockedError,
    BrowserFetchError,
    ContentTypeMismatchError,
    FetchNetworkError,
    FetchTimeoutError,
    ScrapeError,
    UpstreamStatusError,
)
from scrapegate.core.metrics import (
    scrape_attempts_total,
    scrape_duration_seconds,
    scrape_requests_total,
)
from scrapegate.core.tracing import trace_span
from scrapegate.schemas.scrape import (
    Engine,
    RoutingDecision,
    ScrapeContext,
    ScrapeMetadata,
    ScrapeRequest,
    ScrapeResult,
)
from scrapegate.services.browser import BrowserPool
from scrapegate.services.engine_router import EngineRouter
from scrapegate.services.events import EventDispatcher
from scrapegate.services.feedback import (
    ScrapeEventRecord,
    ScrapeEventStore,
    SelectorOutcomeSink,
)
from scrapegate.services.proxy import (
    ProxyPoolManager,
    ProxyRecord,
    ProxySelection,
    ProxyUsageResult,
    TransportFactory,
    proxied_transport,
)
from scrapegate.services.selector_extraction import (
    extract_fields,
    extract_page,
    parse_html,
)

logger = logging.getLogger(__name__)

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml")
_SCROLL_SCRIPT = "window.scrollTo(0, document.body.scrollHeight)"
_SCROLL_SETTLE_MS = 1000


@dataclass
class FetchResult:
    html: str
    status_code: int | None = None
    content_type: str | None = None
    screenshot: str | None = None


class Scraper:
    """Runs one scrape request end to end."""

    def __init__(
        self,
        router: EngineRouter,
        proxy_pool: ProxyPoolManager | None = None,
        browser_pool: BrowserPool | None = None,
        dispatcher: EventDispatcher | None = None,
        selector_sink: SelectorOutcomeSink | None = None,
        event_store: ScrapeEventStore | None = None,
        transport_factory: TransportFactory = proxied_transport,
    ):
        self._router = router
        self._proxy_pool = proxy_pool
        self._browser_pool = browser_pool
        self._dispatcher = dispatcher
        self._selector_sink = selector_sink
        self._event_store = event_store
        self._transport_factory = transport_factory

    async def scrape(
        self, request: ScrapeRequest, context: ScrapeContext | None = None
    ) -> ScrapeResult:
        context = context or ScrapeContext()
        start = time.monotonic()

        with trace_span("scrape", "Scrape URL", url=request.url) as span:
            decision = await self._router.decide(request)
            span.set_data("engine", decision.engine.value)

            fetched, error, attempts, proxy_id = await self._fetch_with_retries(
                request, decision.engine, context
            )

            latency_ms = int((time.monotonic() - start) * 1000)
            if fetched is None:
                result = self._failure_result(
                    request, decision, error, attempts, proxy_id, latency_ms
                )
            else:
                result = self._extract(
                    request, decision, fetched, attempts, proxy_id, latency_ms
                )

        scrape_requests_total.labels(
            engine=decision.engine.value,
            status="success" if result.success else "error",
        ).inc()
        scrape_duration_seconds.labels(engine=decision.engine.value).observe(
            latency_ms / 1000
        )
        self._record_event(result, context)
        return result

    # ------------------------------------------------------------------
    # Fetch loop
    # ------------------------------------------------------------------

    async def _fetch_with_retries(
        self, request: ScrapeRequest, engine: Engine, context: ScrapeContext
    ) -> tuple[FetchResult | None, ScrapeError | None, int, str | None]:
        excluded: list[str] = []
        proxy = await self._acquire_proxy(request, context, excluded)
        max_attempts = request.retries + 1
        last_error: ScrapeError | None = None
        attempts = 0

        for attempt in range(max_attempts):
            attempts = attempt + 1
            has_budget = attempts < max_attempts
            attempt_start = time.monotonic()
            try:
                with trace_span(
                    "scrape.fetch",
                    f"{engine.value} fetch",
                    attempt=attempts,
                    proxy_id=proxy.id if proxy else None,
                ):
                    if engine == Engine.BROWSER:
                        fetched = await self._fetch_browser(request, proxy)
                    else:
                        fetched = await self._fetch_lightweight(request, proxy)
            except ContentTypeMismatchError as e:
                # The proxy delivered a response; the target just isn't HTML
                self._report_proxy(proxy, request, context, attempt_start, success=True)
                scrape_attempts_total.labels(engine=engine.value, outcome="fatal").inc()
                return None, e, attempts, _id(proxy)
            except UpstreamStatusError as e:
                last_error = e
                if e.is_ban_signal and proxy is not None:
                    self._report_proxy(
                        proxy,
                        request,
                        context,
                        attempt_start,
                        status_code=e.status_code,
                        ban_reason=f"HTTP {e.status_code}",
                        error=e.message,
                    )
                    scrape_attempts_total.labels(engine=engine.value, outcome="banned").inc()
                    logger.warning(
                        f"Proxy {proxy.masked()} banned by {request.url} "
                        f"(HTTP {e.status_code}), attempt {attempts}/{max_attempts}"
                    )
                    if not has_budget:
                        return None, BlockedError(e.message), attempts, proxy.id
                    proxy = await self._replace_proxy(request, context, proxy, excluded)
                    await self._backoff(request, attempts)
                    continue

                if not e.retryable:
                    self._report_proxy(
                        proxy,
                        request,
                        context,
                        attempt_start,
                        success=True,
                        status_code=e.status_code,
                    )
                    scrape_attempts_total.labels(engine=engine.value, outcome="fatal").inc()
                    if e.is_ban_signal:
                        return None, BlockedError(e.message), attempts, _id(proxy)
                    return None, e, attempts, _id(proxy)

                # 5xx: transient upstream failure
                self._report_proxy(
                    proxy, request, context, attempt_start,
                    status_code=e.status_code, error=e.message,
                )
            except ScrapeError as e:
                last_error = e
                self._report_proxy(proxy, request, context, attempt_start, error=e.message)
            else:
                self._report_proxy(
                    proxy,
                    request,
                    context,
                    attempt_start,
                    success=True,
                    status_code=fetched.status_code,
                )
                scrape_attempts_total.labels(engine=engine.value, outcome="success").inc()
                return fetched, None, attempts, _id(proxy)

            scrape_attempts_total.labels(engine=engine.value, outcome="retryable").inc()
            logger.info(
                f"Attempt {attempts}/{max_attempts} for {request.url} failed: "
                f"{last_error.code}: {last_error.message}"
            )
            if not has_budget:
                break
            if proxy is not None:
                proxy = await self._replace_proxy(request, context, proxy, excluded)
            await self._backoff(request, attempts)

        return None, last_error, attempts, _id(proxy)

    async def _backoff(self, request: ScrapeRequest, attempt_number: int):
        delay_ms = request.retry_delay * attempt_number
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    async def _acquire_proxy(
        self, request: ScrapeRequest, context: ScrapeContext, excluded: list[str]
    ) -> ProxyRecord | None:
        if not request.use_proxy or self._proxy_pool is None:
            return None

        if request.proxy_id and request.proxy_id not in excluded:
            pinned = await self._proxy_pool.get_by_id(request.proxy_id)
            # Pinning never reaches outside the caller's own pool
            if pinned is not None and pinned.tenant_id == context.tenant_id:
                return pinned
            logger.warning(
                f"Pinned proxy {request.proxy_id} is unavailable, selecting from pool"
            )

        filters = request.proxy_filters
        proxy = await self._proxy_pool.select(
            ProxySelection(
                tenant_id=context.tenant_id,
                country=filters.country if filters else None,
                city=filters.city if filters else None,
                proxy_type=filters.proxy_type if filters else None,
                min_score=filters.min_score if filters else None,
                exclude_ids=list(excluded),
            )
        )
        if proxy is None:
            logger.warning(f"No proxy available for {request.url}, fetching directly")
        return proxy

    async def _replace_proxy(
        self,
        request: ScrapeRequest,
        context: ScrapeContext,
        proxy: ProxyRecord,
        excluded: list[str],
    ) -> ProxyRecord | None:
        if proxy.id not in excluded:
            excluded.append(proxy.id)
        return await self._acquire_proxy(request, context, excluded)

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------

    async def _fetch_lightweight(
        self, request: ScrapeRequest, proxy: ProxyRecord | None
    ) -> FetchResult:
        headers = {"User-Agent": request.effective_user_agent, **request.headers}
        try:
            transport = self._transport_factory(proxy.to_httpx() if proxy else None)
        except (ImportError, ValueError) as e:
            # httpx rejects unsupported proxy schemes and missing SOCKS support here
            raise FetchNetworkError(f"Proxy transport unavailable: {e}") from e

        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=request.timeout / 1000,
                headers=headers,
                transport=transport,
            ) as client:
                response = await client.get(request.url)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(
                f"Request timeout after {request.timeout}ms"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchNetworkError(str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise UpstreamStatusError(response.status_code)

        content_type = response.headers.get("content-type", "")
        if not any(ct in content_type.lower() for ct in _HTML_CONTENT_TYPES):
            raise ContentTypeMismatchError(content_type)

        return FetchResult(
            html=response.text,
            status_code=response.status_code,
            content_type=content_type,
        )

    async def _fetch_browser(
        self, request: ScrapeRequest, proxy: ProxyRecord | None
    ) -> FetchResult:
        if self._browser_pool is None:
            raise BrowserFetchError("Browser engine is not available")

        viewport = request.viewport.model_dump() if request.viewport else None
        try:
            async with self._browser_pool.acquire_page(
                proxy=proxy.to_playwright() if proxy else None,
                user_agent=request.effective_user_agent,
                viewport=viewport,
                extra_headers=dict(request.headers) or None,
            ) as page:
                response = await page.goto(
                    request.url, wait_until="networkidle", timeout=request.timeout
                )
                if request.wait_for_selector:
                    await page.wait_for_selector(
                        request.wait_for_selector,
                        timeout=request.wait_for_timeout or request.timeout,
                    )
                if request.execute_script:
                    await page.evaluate(request.execute_script)
                if request.scroll_to_bottom:
                    await page.evaluate(_SCROLL_SCRIPT)
                    await page.wait_for_timeout(_SCROLL_SETTLE_MS)

                screenshot = None
                if request.screenshot:
                    png = await page.screenshot(full_page=True, type="png")
                    screenshot = "data:image/png;base64," + base64.b64encode(png).decode()

                html = await page.content()
        except PlaywrightTimeoutError as e:
            raise FetchTimeoutError(f"Browser timeout: {e.message}") from e
        except PlaywrightError as e:
            raise BrowserFetchError(e.message) from e

        return FetchResult(
            html=html,
            status_code=response.status if response else None,
            content_type=response.headers.get("content-type") if response else None,
            screenshot=screenshot,
        )

    # ------------------------------------------------------------------
    # Extraction and results
    # ------------------------------------------------------------------

    def _extract(
        self,
        request: ScrapeRequest,
        decision: RoutingDecision,
        fetched: FetchResult,
        attempts: int,
        proxy_id: str | None,
        latency_ms: int,
    ) -> ScrapeResult:
        with trace_span("scrape.extract", "Extract fields", fields=len(request.selectors)):
            soup = parse_html(fetched.html)
            if request.selectors:
                data, outcomes = extract_fields(
                    soup,
                    request.url,
                    request.selectors,
                    extract_text=request.extract_text,
                    extract_html=request.extract_html,
                    attributes=list(request.extract_attributes),
                )
                if outcomes and self._selector_sink is not None:
                    self._submit(
                        "selector_outcomes",
                        functools.partial(self._selector_sink.record, outcomes),
                    )
            else:
                data = extract_page(
                    soup,
                    fetched.html,
                    extract_text=request.extract_text,
                    extract_html=request.extract_html,
                )

        return ScrapeResult(
            success=True,
            url=request.url,
            data=data,
            html=fetched.html if request.extract_html else None,
            screenshot=fetched.screenshot,
            metadata=ScrapeMetadata(
                latency_ms=latency_ms,
                content_length=len(fetched.html),
                content_type=fetched.content_type,
                status_code=fetched.status_code,
                engine=decision.engine,
                attempts=attempts,
                proxy_id=proxy_id,
                routing_reason=decision.reason,
                routing_confidence=decision.confidence,
            ),
        )

    def _failure_result(
        self,
        request: ScrapeRequest,
        decision: RoutingDecision,
        error: ScrapeError | None,
        attempts: int,
        proxy_id: str | None,
        latency_ms: int,
    ) -> ScrapeResult:
        error = error or ScrapeError("Scrape failed")
        logger.warning(
            f"Scrape failed for {request.url} after {attempts} attempt(s): "
            f"{error.code}: {error.message}"
        )
        return ScrapeResult(
            success=False,
            url=request.url,
            error=error.message,
            error_code=error.code,
            metadata=ScrapeMetadata(
                latency_ms=latency_ms,
                status_code=getattr(error, "status_code", None),
                engine=decision.engine,
                attempts=attempts,
                proxy_id=proxy_id,
                routing_reason=decision.reason,
                routing_confidence=decision.confidence,
            ),
        )

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _submit(self, kind: str, factory):
        if self._dispatcher is None:
            return
        self._dispatcher.submit(kind, factory)

    def _report_proxy(
        self,
        proxy: ProxyRecord | None,
        request: ScrapeRequest,
        context: ScrapeContext,
        attempt_start: float,
        success: bool = False,
        status_code: int | None = None,
        ban_reason: str | None = None,
        error: str | None = None,
    ):
        if proxy is None or self._proxy_pool is None:
            return
        usage = ProxyUsageResult(
            url=request.url,
            success=success,
            status_code=status_code,
            latency_ms=int((time.monotonic() - attempt_start) * 1000),
            ban_reason=ban_reason,
            error_message=error,
        )
        self._submit(
            "proxy_usage",
            functools.partial(self._proxy_pool.report, proxy.id, usage, context),
        )

    def _record_event(self, result: ScrapeResult, context: ScrapeContext):
        if self._event_store is None:
            return
        meta = result.metadata
        event = ScrapeEventRecord(
            url=result.url,
            engine=meta.engine.value,
            success=result.success,
            latency_ms=meta.latency_ms,
            content_length=meta.content_length,
            error_message=result.error,
            tenant_id=context.tenant_id,
            workspace_id=context.workspace_id,
            user_id=context.user_id,
            metadata={
                "status_code": meta.status_code,
                "attempts": meta.attempts,
                "proxy_id": meta.proxy_id,
                "error_code": result.error_code,
                "routing_reason": meta.routing_reason,
                "routing_confidence": meta.routing_confidence,
            },
        )
        self._submit("scrape_event", functools.partial(self._event_store.record, event))


def _id(proxy: ProxyRecord | None) -> str | None:
    return proxy.id if proxy else None
