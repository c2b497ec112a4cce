"""Engine routing: decide between lightweight parsing and browser rendering.

The decision for a URL is driven by cheap signals taken from a short probe
GET: script tags, framework fingerprints, hydration markers and markup
density. Heuristics are cached per URL so repeat requests skip the probe.
"""

import logging
import re
import time

import httpx

from scrapegate.config import settings
from scrapegate.core.metrics import router_decisions_total, router_probe_duration_seconds
from scrapegate.core.tracing import trace_span
from scrapegate.schemas.scrape import Engine, RoutingDecision, ScrapeRequest
from scrapegate.services.heuristic_cache import HeuristicCache, RoutingHeuristics

logger = logging.getLogger(__name__)

_SCRIPT_TAG = re.compile(r"<script[^>]*>", re.IGNORECASE)
_DIV_TAG = re.compile(r"<div[^>]*>", re.IGNORECASE)
_FRAMEWORK_NAMES = re.compile(r"react|angular|vue|next\.js|nuxt", re.IGNORECASE)
_FRAMEWORK_MARKERS = re.compile(r"__REACT_DEVTOOLS|ng-app|v-if|v-for", re.IGNORECASE)
_BINDING_ATTRS = re.compile(r"data-react|data-ng|v-bind|v-model", re.IGNORECASE)
_HYDRATION_STATE = re.compile(
    r"__INITIAL_STATE__|__PRELOADED_STATE__|__NEXT_DATA__|__NUXT__", re.IGNORECASE
)
_EVENT_HANDLERS = re.compile(r"onclick|onchange|onload|addEventListener", re.IGNORECASE)
_INTERACTIVE_CONTROLS = re.compile(r"button.*click|form.*submit")


def analyze_html(html: str) -> RoutingHeuristics:
    """Extract routing signals from raw markup."""
    script_count = len(_SCRIPT_TAG.findall(html))
    div_count = len(_DIV_TAG.findall(html))
    has_framework = bool(
        _FRAMEWORK_NAMES.search(html) or _FRAMEWORK_MARKERS.search(html)
    )

    if script_count > 10 or div_count > 100:
        complexity = "complex"
    elif script_count > 3 or div_count > 50:
        complexity = "medium"
    else:
        complexity = "simple"

    js_required = (
        has_framework
        or bool(_BINDING_ATTRS.search(html))
        or bool(_HYDRATION_STATE.search(html))
        or ("<noscript" in html.lower() and script_count > 5)
    )
    requires_interaction = bool(
        _EVENT_HANDLERS.search(html) or _INTERACTIVE_CONTROLS.search(html.lower())
    )

    return RoutingHeuristics(
        complexity=complexity,
        js_required=js_required,
        has_script_tags=script_count > 0,
        has_framework=has_framework,
        requires_interaction=requires_interaction,
        script_count=script_count,
        div_count=div_count,
    )


def decide_engine(
    heuristics: RoutingHeuristics, request: ScrapeRequest
) -> RoutingDecision:
    """Apply the ordered routing rules; the first match wins."""
    h = heuristics
    if h.has_framework:
        return RoutingDecision(
            engine=Engine.BROWSER,
            reason="JavaScript framework detected",
            confidence=0.9,
        )
    if h.js_required and h.complexity == "complex":
        return RoutingDecision(
            engine=Engine.BROWSER,
            reason="Complex page requires JavaScript rendering",
            confidence=0.8,
        )
    if h.requires_interaction and request.wait_for_selector:
        return RoutingDecision(
            engine=Engine.BROWSER,
            reason="Page requires interaction before the target selector appears",
            confidence=0.85,
        )
    if h.js_required and h.has_script_tags:
        return RoutingDecision(
            engine=Engine.BROWSER,
            reason="Dynamic content rendered by scripts",
            confidence=0.7,
        )
    if h.complexity == "simple" and not h.has_script_tags:
        return RoutingDecision(
            engine=Engine.LIGHTWEIGHT,
            reason="Static page without scripts",
            confidence=0.9,
        )
    return RoutingDecision(
        engine=Engine.LIGHTWEIGHT,
        reason="No strong JavaScript signals, defaulting to lightweight parsing",
        confidence=0.6,
    )


class EngineRouter:
    """Chooses the fetch engine for a scrape request."""

    def __init__(
        self,
        cache: HeuristicCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._cache = cache if settings.HEURISTIC_CACHE_ENABLED else None
        self._transport = transport

    async def decide(self, request: ScrapeRequest) -> RoutingDecision:
        if request.engine is not None:
            router_decisions_total.labels(
                engine=request.engine.value, source="explicit"
            ).inc()
            return RoutingDecision(
                engine=request.engine,
                reason="Engine explicitly requested",
                confidence=1.0,
            )

        cached = await self._cache_get(request.url)
        if cached is not None:
            decision = decide_engine(cached, request)
            router_decisions_total.labels(
                engine=decision.engine.value, source="cache"
            ).inc()
            return decision.model_copy(
                update={"reason": f"{decision.reason} (cached)"}
            )

        with trace_span("router.probe", "Probe target page", url=request.url):
            try:
                html = await self._probe(request.url)
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                return self._probe_failure_decision(request.url, e)

        heuristics = analyze_html(html)
        await self._cache_set(request.url, heuristics)

        decision = decide_engine(heuristics, request)
        router_decisions_total.labels(engine=decision.engine.value, source="probe").inc()
        logger.debug(
            f"Routed {request.url} to {decision.engine.value} "
            f"({decision.reason}, confidence={decision.confidence})"
        )
        return decision

    async def _probe(self, url: str) -> str:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=settings.PROBE_TIMEOUT_MS / 1000,
                follow_redirects=True,
                max_redirects=settings.PROBE_MAX_REDIRECTS,
                headers={"User-Agent": settings.DEFAULT_USER_AGENT},
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.text
        finally:
            router_probe_duration_seconds.observe(time.monotonic() - start)

    def _probe_failure_decision(self, url: str, exc: Exception) -> RoutingDecision:
        engine = Engine(settings.ENGINE_ON_PROBE_FAILURE)
        logger.warning(f"Routing probe failed for {url}: {exc}")
        router_decisions_total.labels(engine=engine.value, source="fallback").inc()
        return RoutingDecision(
            engine=engine,
            reason=f"Probe failed, falling back to {engine.value}: {exc}",
            confidence=0.5,
        )

    async def _cache_get(self, url: str) -> RoutingHeuristics | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(url)
        except Exception as e:
            logger.warning(f"Heuristic cache read failed for {url}: {e}")
            return None

    async def _cache_set(self, url: str, heuristics: RoutingHeuristics) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(url, heuristics, settings.HEURISTIC_CACHE_TTL_SECONDS)
        except Exception as e:
            logger.warning(f"Heuristic cache write failed for {url}: {e}")
