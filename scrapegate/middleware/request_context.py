"""Request context middleware for request tracing.

Reads X-Request-ID from the incoming request header or generates a UUID4,
and X-Tenant-ID when the caller provides one. Both are stored in
contextvars.ContextVar instances for use in logging, and the request id
is propagated back as a response header.
"""

import contextvars
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variables accessible from anywhere in the same async task
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)
tenant_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "tenant_id", default=""
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        rid_token = request_id_var.set(rid)
        tenant_token = tenant_id_var.set(request.headers.get("X-Tenant-ID", ""))
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            tenant_id_var.reset(tenant_token)
            request_id_var.reset(rid_token)


def get_request_id() -> str:
    """Get the current request ID (empty string if not in a request context)."""
    return request_id_var.get()


def get_tenant_id() -> str:
    return tenant_id_var.get()
