"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Mapping from exceptions to the ErrorKind recorded on task results
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Usage:
    from guardian.app.core.errors import (
        GuardianError,
        ExternalServiceError,
        FeedParseError,
        register_error_handlers,
    )

    raise ExternalServiceError("NIFC", "HTTP 503")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from guardian.app.core.config import settings
from guardian.app.core.results import ErrorKind

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class GuardianError(Exception):
    """Base exception for all application errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(GuardianError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(GuardianError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ExternalServiceError(GuardianError):
    """Upstream feed call failed (502)."""

    kind = ErrorKind.FETCH

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )


class FeedParseError(GuardianError):
    """Upstream payload could not be parsed (502)."""

    kind = ErrorKind.PARSE

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Could not parse '{source}' payload: {message}",
            status_code=502,
            error_code="FEED_PARSE_ERROR",
            details={"source": source, **details},
        )


class StoreError(GuardianError):
    """Hazard store operation failed (500)."""

    kind = ErrorKind.STORE

    def __init__(self, operation: str, message: str = ""):
        super().__init__(
            message=f"Store operation '{operation}' failed: {message}",
            status_code=500,
            error_code="STORE_ERROR",
            details={"operation": operation},
        )


class PushDeliveryError(GuardianError):
    """Push gateway rejected or could not be reached (502)."""

    kind = ErrorKind.GATEWAY

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            message=f"Push delivery failed: {message}",
            status_code=502,
            error_code="PUSH_DELIVERY_ERROR",
            details=details,
        )
        # Chunks delivered before the failure; set by the gateway
        self.partial_report = None


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception to the ErrorKind recorded on a TaskResult."""
    if isinstance(exc, GuardianError):
        return exc.kind
    return ErrorKind.INTERNAL


# ═══════════════════════════════════════════════════════════════════════════
# HTTP error responses
# ═══════════════════════════════════════════════════════════════════════════
#
#   {"error": {"code": "...", "message": "...", "status": 502,
#              "details": {...}, "path": "/api/v1/flood"}}
#
# `path` is omitted in production.

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    path: Optional[str] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if path and not settings.is_production:
        error["path"] = path
    return {"error": error}


def _respond(request: Request, status_code: int, error_code: str, message: str,
             details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, error_code, message, details, request.url.path),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map GuardianError, request validation and stray exceptions to error bodies."""

    @app.exception_handler(GuardianError)
    async def handle_guardian_error(request: Request, exc: GuardianError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("%s %s: %s", exc.error_code, request.url.path, exc.message,
            extra={"status_code": exc.status_code, "error_kind": exc.kind.value})
        return _respond(request, exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return _respond(
            request, 422, "VALIDATION_ERROR", "Invalid request parameters",
            {"fields": fields},
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception on %s: %s\n%s",
                        request.url.path, exc, traceback.format_exc())
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _respond(request, 500, "INTERNAL_ERROR", message)
