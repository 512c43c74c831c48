"""FastAPI middleware for request tracking and error handling.

Adds:
- X-Request-ID header (generated if not provided)
- X-Process-Time header (request duration)
- request_id / company_id bound into the structlog context
- One exception handler for every AutomationError
"""

import logging
import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.exceptions import AutomationError

logger = logging.getLogger(__name__)

_QUIET_PATHS = ("/api/health", "/api/v1/health")


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request ID and timing to every request/response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            company_id=request.headers.get("X-Company-Id"),
        )

        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path} "
                f"({duration_ms:.0f}ms): {exc}",
                exc_info=True,
            )
            # In production, don't expose error details to client
            if get_settings().is_production:
                error_detail = "Internal server error"
            else:
                error_detail = str(exc) or "Internal server error"
            return JSONResponse(
                status_code=500,
                content={"detail": error_detail, "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )

        duration_ms = (time.monotonic() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        if not request.url.path.startswith(_QUIET_PATHS):
            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.0f}ms)",
            )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the global AutomationError handler."""

    @app.exception_handler(AutomationError)
    async def automation_error_handler(request: Request, exc: AutomationError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error_code": type(exc).__name__,
                "request_id": getattr(request.state, "request_id", None),
            },
        )
