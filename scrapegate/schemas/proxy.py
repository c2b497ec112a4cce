from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ProxyType = Literal["residential", "datacenter", "mobile", "isp"]


class ProxyCreate(BaseModel):
    name: str
    type: ProxyType
    host: str
    port: int = Field(gt=0, lt=65536)
    protocol: Literal["http", "https", "socks5"] = "http"
    provider: str | None = None
    username: str | None = None
    password: str | None = None
    country: str | None = None
    city: str | None = None
    max_concurrent: int = Field(10, gt=0)
    metadata: dict[str, Any] | None = None


class ProxyUpdate(BaseModel):
    is_active: bool


class ProxyScoreResponse(BaseModel):
    score: int
    success_rate: int
    ban_rate: int
    avg_latency_ms: int | None = None
    total_requests: int
    successful_requests: int
    failed_requests: int
    banned_requests: int
    last_used_at: datetime | None = None
    last_scored_at: datetime | None = None


class ProxyResponse(BaseModel):
    id: str
    name: str
    type: str
    provider: str | None = None
    protocol: str
    host: str
    port: int
    username: str | None = None  # masked
    country: str | None = None
    city: str | None = None
    is_active: bool
    organization_id: str | None = None
    score: ProxyScoreResponse | None = None


class ProxyListResponse(BaseModel):
    proxies: list[ProxyResponse]
    total: int


class ProxyValidateRequest(BaseModel):
    test_url: str | None = None


class ProxyValidateResponse(BaseModel):
    proxy_id: str
    valid: bool
