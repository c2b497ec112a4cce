import asyncio
import logging

from fastapi import APIRouter, Depends, Query

from scrapegate.api.deps import get_engine, get_scrape_context
from scrapegate.config import settings
from scrapegate.core.metrics import scrape_requests_total
from scrapegate.engine import ScrapeEngine
from scrapegate.schemas.scrape import (
    Engine,
    RoutingDecision,
    ScrapeContext,
    ScrapeMetadata,
    ScrapeRequest,
    ScrapeResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# Global concurrency limiter: requests beyond this limit wait in queue
# instead of all running at once.
_scrape_semaphore: asyncio.Semaphore | None = None


def _get_scrape_semaphore() -> asyncio.Semaphore:
    global _scrape_semaphore
    if _scrape_semaphore is None:
        _scrape_semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_SCRAPES)
    return _scrape_semaphore


def _timeout_result(request: ScrapeRequest, error: str) -> ScrapeResult:
    scrape_requests_total.labels(
        engine=(request.engine or Engine.LIGHTWEIGHT).value, status="error"
    ).inc()
    return ScrapeResult(
        success=False,
        url=request.url,
        error=error,
        error_code="TIMEOUT",
        metadata=ScrapeMetadata(engine=request.engine or Engine.LIGHTWEIGHT),
    )


@router.post(
    "",
    response_model=ScrapeResult,
    response_model_exclude_none=True,
    summary="Scrape a single URL",
    description="Fetch a URL with the lightweight or browser engine (chosen automatically unless `engine` is set), optionally through a scored proxy, and extract the requested fields by CSS selector.",
)
async def scrape(
    request: ScrapeRequest,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    sem = _get_scrape_semaphore()
    try:
        await asyncio.wait_for(sem.acquire(), timeout=30)
    except asyncio.TimeoutError:
        return _timeout_result(
            request, "Server is at capacity. Please retry in a few seconds."
        )

    try:
        return await asyncio.wait_for(
            engine.scraper.scrape(request, context),
            timeout=settings.SCRAPE_API_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Scrape of {request.url} exceeded {settings.SCRAPE_API_TIMEOUT}s")
        return _timeout_result(
            request, f"Scrape timed out after {settings.SCRAPE_API_TIMEOUT}s"
        )
    finally:
        sem.release()


@router.post(
    "/route",
    response_model=RoutingDecision,
    summary="Preview the engine routing decision",
    description="Return the engine the router would choose for this request, with its reason and confidence, without fetching content.",
)
async def route(request: ScrapeRequest, engine: ScrapeEngine = Depends(get_engine)):
    return await engine.router.decide(request)


@router.get(
    "/events",
    summary="Recent scrape events",
    description="List the most recent scrape outcomes recorded for the calling tenant.",
)
async def recent_events(
    limit: int = Query(50, ge=1, le=500),
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    events = await engine.event_store.recent(limit=limit, tenant_id=context.tenant_id)
    return {"events": events, "total": len(events)}
