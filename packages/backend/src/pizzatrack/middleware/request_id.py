"""Request ID middleware — one trace id per HTTP request.

The id comes from the caller's X-Request-ID when it looks sane, otherwise
a fresh UUID. It is bound to the log context together with the method
and path (the same fields the structured error body reports), echoed in
the response, and closed out with one access log line.
"""

import re
import time
import uuid
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from pizzatrack.log import bind_request_context

logger = structlog.get_logger()

# Dashboards and proxies send UUIDs or short opaque ids; anything else is replaced.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming: Optional[str]) -> str:
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log how it went."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get("X-Request-ID"))
        bind_request_context(request_id, request.method, request.url.path)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if request.url.path.startswith("/api/"):
            logger.info(
                "http.request",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return response
