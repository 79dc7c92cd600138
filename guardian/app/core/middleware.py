"""
Request middleware — correlation IDs and per-request logging.

Every response carries:
    X-Request-ID     caller-supplied or generated
    X-Process-Time   handler duration in milliseconds

The request id is placed in the log context for the duration of the
request, so pipeline code called inline (a flood lookup, a manual job run)
logs under the same id.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from guardian.app.core.logging_config import set_log_context

logger = logging.getLogger(__name__)

# Probes and docs are not worth a log line each
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        set_log_context(request_id=request_id, endpoint=path, method=request.method)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{_elapsed_ms(start):.1f}ms"
            return response
        finally:
            duration_ms = _elapsed_ms(start)
            if status_code >= 500 or not path.startswith(_QUIET_PREFIXES):
                logger.log(
                    logging.WARNING if status_code >= 400 else logging.INFO,
                    "%s %s → %d (%.1fms)",
                    request.method, path, status_code, duration_ms,
                    extra={
                        "duration_ms": round(duration_ms, 1),
                        "status_code": status_code,
                        "endpoint": path,
                    },
                )
            set_log_context()
