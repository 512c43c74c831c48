"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
This makes it trivial to add /api/v2 later without touching existing routes.
"""

from fastapi import APIRouter

from api.routes import events, executions, health, workflows

api_v1_router = APIRouter()

# Health (no tenant header required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflows, steps, templates
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Executions
api_v1_router.include_router(
    executions.router,
    prefix="/executions",
    tags=["Executions"],
)

# Business events
api_v1_router.include_router(
    events.router,
    prefix="/events",
    tags=["Events"],
)
