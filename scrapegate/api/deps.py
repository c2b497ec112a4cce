from fastapi import Header, Request

from scrapegate.engine import ScrapeEngine
from scrapegate.schemas.scrape import ScrapeContext


def get_engine(request: Request) -> ScrapeEngine:
    return request.app.state.engine


def get_scrape_context(
    x_tenant_id: str | None = Header(None),
    x_workspace_id: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> ScrapeContext:
    """Caller identity forwarded by the gateway in front of this service."""
    return ScrapeContext(
        tenant_id=x_tenant_id or None,
        workspace_id=x_workspace_id or None,
        user_id=x_user_id or None,
    )
