import logging

from fastapi import APIRouter, Depends

from scrapegate.api.deps import get_engine, get_scrape_context
from scrapegate.engine import ScrapeEngine
from scrapegate.schemas.proxy import (
    ProxyCreate,
    ProxyListResponse,
    ProxyResponse,
    ProxyScoreResponse,
    ProxyUpdate,
    ProxyValidateRequest,
    ProxyValidateResponse,
)
from scrapegate.schemas.scrape import ScrapeContext
from scrapegate.services.proxy import ProxyRecord, ProxyScore

router = APIRouter()
logger = logging.getLogger(__name__)


def _mask_username(username: str | None) -> str | None:
    if not username:
        return None
    return username[:2] + "***"


def _score_response(score: ProxyScore) -> ProxyScoreResponse:
    return ProxyScoreResponse(
        score=score.score,
        success_rate=score.success_rate,
        ban_rate=score.ban_rate,
        avg_latency_ms=score.avg_latency_ms,
        total_requests=score.total_requests,
        successful_requests=score.successful_requests,
        failed_requests=score.failed_requests,
        banned_requests=score.banned_requests,
        last_used_at=score.last_used_at,
        last_scored_at=score.last_scored_at,
    )


def _proxy_response(proxy: ProxyRecord, score: ProxyScore | None = None) -> ProxyResponse:
    return ProxyResponse(
        id=proxy.id,
        name=proxy.name,
        type=proxy.proxy_type,
        provider=proxy.provider,
        protocol=proxy.protocol,
        host=proxy.host,
        port=proxy.port,
        username=_mask_username(proxy.username),
        country=proxy.country,
        city=proxy.city,
        is_active=proxy.is_active,
        organization_id=proxy.tenant_id,
        score=_score_response(score) if score else None,
    )


@router.post(
    "",
    response_model=ProxyResponse,
    status_code=201,
    summary="Add a proxy",
    description="Register a proxy in the calling tenant's pool, or in the global pool when no X-Tenant-ID header is sent.",
)
async def add_proxy(
    body: ProxyCreate,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    proxy = await engine.proxy_pool.add_proxy(
        ProxyRecord(
            id="",
            host=body.host,
            port=body.port,
            protocol=body.protocol,
            proxy_type=body.type,
            username=body.username,
            password=body.password,
            country=body.country,
            city=body.city,
            tenant_id=context.tenant_id,
            name=body.name,
            provider=body.provider,
            max_concurrent=body.max_concurrent,
        ),
        metadata=body.metadata,
    )
    return _proxy_response(proxy)


@router.get(
    "",
    response_model=ProxyListResponse,
    summary="List proxies",
    description="List the calling tenant's proxies (or the global pool) with their current scores.",
)
async def list_proxies(
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    rows = await engine.proxy_pool.list_proxies(context.tenant_id)
    proxies = [_proxy_response(proxy, score) for proxy, score in rows]
    return ProxyListResponse(proxies=proxies, total=len(proxies))


@router.patch(
    "/{proxy_id}",
    status_code=204,
    summary="Activate or deactivate a proxy",
)
async def update_proxy(
    proxy_id: str,
    body: ProxyUpdate,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    await engine.proxy_pool.set_active(proxy_id, body.is_active, tenant_id=context.tenant_id)


@router.delete("/{proxy_id}", status_code=204, summary="Remove a proxy")
async def remove_proxy(
    proxy_id: str,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    await engine.proxy_pool.remove_proxy(proxy_id, tenant_id=context.tenant_id)


@router.get(
    "/{proxy_id}/stats",
    response_model=ProxyScoreResponse,
    summary="Proxy score and usage counters",
)
async def proxy_stats(
    proxy_id: str,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    stats = await engine.proxy_pool.get_stats(proxy_id, tenant_id=context.tenant_id)
    return _score_response(stats)


@router.post(
    "/{proxy_id}/validate",
    response_model=ProxyValidateResponse,
    summary="Validate a proxy",
    description="Send a test request through the proxy. The outcome is recorded in the proxy's usage log and score.",
)
async def validate_proxy(
    proxy_id: str,
    body: ProxyValidateRequest | None = None,
    engine: ScrapeEngine = Depends(get_engine),
    context: ScrapeContext = Depends(get_scrape_context),
):
    valid = await engine.proxy_pool.validate(
        proxy_id, body.test_url if body else None, tenant_id=context.tenant_id
    )
    return ProxyValidateResponse(proxy_id=proxy_id, valid=valid)
