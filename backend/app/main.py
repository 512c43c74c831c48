"""Workflow Automation Engine - FastAPI Application."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from db.database import close_db, init_db
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    await init_db()
    logger.info(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield

    from workflow.engine import get_automation_engine

    await get_automation_engine().aclose()
    await close_db()
    logger.info("[shutdown] Application shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Event-driven workflow automation: triggers, timed waits, "
                    "conditional branches and durable step execution.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestTrackingMiddleware)
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API: all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
