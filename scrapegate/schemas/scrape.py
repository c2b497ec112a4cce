from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scrapegate.config import settings


def _normalize_url(url: str) -> str:
    """Prepend https:// if no protocol is present."""
    url = url.strip()
    if url and not url.startswith(("http://", "https://", "//")):
        url = f"https://{url}"
    return url


class Engine(str, Enum):
    LIGHTWEIGHT = "lightweight"
    BROWSER = "browser"


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(1920, gt=0)
    height: int = Field(1080, gt=0)


class ProxyFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str | None = None
    city: str | None = None
    proxy_type: str | None = None  # residential, datacenter, mobile, isp
    min_score: int | None = Field(None, ge=0, le=100)


class ScrapeRequest(BaseModel):
    """A validated, immutable scrape request."""

    model_config = ConfigDict(frozen=True)

    url: str

    @field_validator("url", mode="before")
    @classmethod
    def _add_protocol(cls, v: str) -> str:
        return _normalize_url(v)

    selectors: dict[str, str] = {}  # field name -> CSS selector
    extract_text: bool = True
    extract_html: bool = False
    extract_attributes: list[str] = []

    timeout: int = Field(default_factory=lambda: settings.DEFAULT_TIMEOUT, gt=0)  # ms
    retries: int = Field(default_factory=lambda: settings.DEFAULT_RETRIES, ge=0)
    retry_delay: int = Field(
        default_factory=lambda: settings.DEFAULT_RETRY_DELAY, ge=0
    )  # ms
    headers: dict[str, str] = {}
    user_agent: str | None = None

    engine: Engine | None = None  # explicit override skips the router

    # Browser-only options
    wait_for_selector: str | None = None
    wait_for_timeout: int | None = Field(None, gt=0)  # ms
    execute_script: str | None = None
    scroll_to_bottom: bool = False
    screenshot: bool = False
    viewport: Viewport | None = None

    use_proxy: bool = False
    proxy_filters: ProxyFilters | None = None
    proxy_id: str | None = None  # pin a specific proxy

    @property
    def effective_user_agent(self) -> str:
        return self.user_agent or settings.DEFAULT_USER_AGENT


class RoutingDecision(BaseModel):
    engine: Engine
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)


class ScrapeMetadata(BaseModel):
    latency_ms: int = 0
    content_length: int = 0
    content_type: str | None = None
    status_code: int | None = None
    engine: Engine
    attempts: int = 0
    proxy_id: str | None = None
    routing_reason: str | None = None
    routing_confidence: float | None = None


class ScrapeResult(BaseModel):
    success: bool
    url: str
    data: dict[str, Any] = {}
    html: str | None = None
    screenshot: str | None = None  # data:image/png;base64,...
    error: str | None = None
    error_code: str | None = None
    metadata: ScrapeMetadata


class ScrapeContext(BaseModel):
    """Caller identity used to scope proxy selection and usage logs."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str | None = None
    workspace_id: str | None = None
    user_id: str | None = None
