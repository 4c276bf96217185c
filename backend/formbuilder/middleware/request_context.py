"""
Request context middleware for log correlation.

WHAT: Middleware that assigns every request an ID and makes it, together
with the client address and route, available for the rest of the request.

WHY: A single plan change fans out into several Stripe calls (release a
schedule, update the subscription, re-read it). Tagging every log line with
the same request ID lets support reconstruct what happened to a customer's
subscription from the logs alone.

HOW: Stores the context in request.state and in a ContextVar, so services
can reach it without the Request object being threaded through.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """
    Container for request-scoped context data.

    Fields:
    - request_id: Unique identifier for the request (for log correlation)
    - ip_address: Client's real IP (considering proxies)
    - path: Request path
    - method: HTTP method
    """

    request_id: str
    ip_address: str
    path: str
    method: str


# WHY: ContextVar ensures each async request gets its own isolated context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """Get the current request context, or None outside a request."""
    return _request_context.get()


def get_request_id() -> Optional[str]:
    """Request ID for log records, or None outside a request."""
    context = _request_context.get()
    return context.request_id if context else None


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP address from a request.

    HOW: Checks headers in order of trust:
    1. X-Real-IP (set by nginx-style proxies)
    2. X-Forwarded-For (first entry is the original client)
    3. request.client.host (direct connection IP)
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    WHY: An upstream proxy may already have assigned a request ID; reusing
    it keeps one ID across the whole call chain. Otherwise a UUID4 is minted.
    The ID is echoed back in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_context.reset(token)
