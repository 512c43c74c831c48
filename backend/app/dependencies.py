"""FastAPI dependency injection functions."""

import logging

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AsyncSessionLocal
from workflow.engine import AutomationEngine, get_automation_engine

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_company_id(
    x_company_id: str = Header(default=None, alias="X-Company-Id"),
) -> str:
    """
    Tenant scope of the request.

    Authentication happens upstream; the gateway forwards the caller's
    company in ``X-Company-Id``.

    Raises:
        HTTPException: If the header is missing or blank
    """
    if not x_company_id or not x_company_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Company-Id header is required",
        )
    return x_company_id.strip()


def get_engine() -> AutomationEngine:
    """The process-wide automation engine."""
    return get_automation_engine()
