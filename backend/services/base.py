"""Base CRUD service with tenant-scoped queries.

All service classes inherit from this. Provides standard
create/read/update/delete with pagination, filtering and
company scoping (multi-tenant).
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Usage:
        class WorkflowService(BaseService[Workflow]):
            def __init__(self, db: AsyncSession):
                super().__init__(Workflow, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Get a single record by ID."""
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_by_id_and_company(
        self,
        id: str,
        company_id: str,
    ) -> Optional[ModelType]:
        """Get a single record scoped to a company."""
        query = select(self.model).where(
            self.model.id == id,
            self.model.company_id == company_id,
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        company_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        filters: dict[str, Any] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """List records with pagination, filtering, and sorting.

        ``None`` filter values are ignored; list values mean ``IN``.

        Returns:
            Tuple of (items, total_count)
        """
        query = select(self.model)
        count_query = select(func.count()).select_from(self.model)

        # Company scope
        if company_id and hasattr(self.model, "company_id"):
            query = query.where(self.model.company_id == company_id)
            count_query = count_query.where(self.model.company_id == company_id)

        # Additional filters
        if filters:
            for field, value in filters.items():
                if value is None or not hasattr(self.model, field):
                    continue
                col = getattr(self.model, field)
                if isinstance(value, list):
                    query = query.where(col.in_(value))
                    count_query = count_query.where(col.in_(value))
                else:
                    query = query.where(col == value)
                    count_query = count_query.where(col == value)

        # Sorting
        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        # Pagination
        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        items = result.scalars().all()

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        return items, total

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dict of field values

        Returns:
            Created model instance
        """
        if "id" not in data:
            data["id"] = str(uuid4())

        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    # ─── Delete ────────────────────────────────────────────

    async def hard_delete(self, id: str, company_id: Optional[str] = None) -> bool:
        """Permanently delete a record.

        Returns:
            True if deleted, False if not found
        """
        if company_id and hasattr(self.model, "company_id"):
            instance = await self.get_by_id_and_company(id, company_id)
        else:
            instance = await self.get_by_id(id)
        if not instance:
            return False

        await self.db.delete(instance)
        await self.db.flush()
        return True
