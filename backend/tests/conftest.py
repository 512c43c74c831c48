"""Shared pytest fixtures for the workflow automation engine test suite.

Provides:
- A file-backed async SQLite database per test (foreign keys enforced)
- Session factory and a convenience session
- A manual clock and recording fake collaborators
- An AutomationEngine wired to all of the above
- FastAPI test client (httpx.AsyncClient) with dependencies overridden
"""

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import Settings  # noqa: E402
from db.database import create_db_engine, create_session_factory, init_db  # noqa: E402
from integrations.collaborators import Collaborators  # noqa: E402
from services.workflow_service import WorkflowService  # noqa: E402
from workflow.engine import AutomationEngine  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class ManualClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 6, 1, 9, 0, 0)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class FakeCollaborators(Collaborators):
    """Records every call and answers like the surrounding system would.

    ``failures`` maps a method name to how many calls fail before it
    recovers (``None`` fails forever). ``entities`` maps
    ``(entity_type, entity_id)`` to the record fetch_entity returns.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.entities: dict[tuple, dict] = {}
        self.failures: dict[str, Optional[int]] = {}
        self.fetch_error: Optional[Exception] = None
        self.fetches: list[tuple] = []
        self.closed = False

    def methods_called(self) -> list[str]:
        return [c["method"] for c in self.calls]

    async def _call(self, method: str, config: dict, entity_id, context, **extra) -> dict:
        self.calls.append({
            "method": method,
            "config": config,
            "entity_id": entity_id,
            "context": context or {},
        })
        if method in self.failures:
            remaining = self.failures[method]
            if remaining is None or remaining > 0:
                if remaining is not None:
                    self.failures[method] = remaining - 1
                return {"success": False, "error": f"{method} unavailable"}
        return {"success": True, **extra}

    async def send_email(self, config, entity_id, context=None):
        return await self._call("send_email", config, entity_id, context)

    async def send_sms(self, config, entity_id, context=None):
        return await self._call("send_sms", config, entity_id, context)

    async def send_whatsapp(self, config, entity_id, context=None):
        return await self._call("send_whatsapp", config, entity_id, context)

    async def create_task(self, config, entity_id, context=None):
        return await self._call("create_task", config, entity_id, context, taskId=f"task-{len(self.calls) + 1}")

    async def update_lead(self, config, entity_id, context=None):
        return await self._call("update_lead", config, entity_id, context)

    async def update_client(self, config, entity_id, context=None):
        return await self._call("update_client", config, entity_id, context)

    async def create_notification(self, config, entity_id, context=None):
        return await self._call("create_notification", config, entity_id, context)

    async def call_webhook(self, config, entity_id, context=None):
        return await self._call("call_webhook", config, entity_id, context, status_code=200)

    async def fetch_entity(self, entity_type, entity_id):
        self.fetches.append((entity_type, entity_id))
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.entities.get((entity_type, entity_id))

    async def aclose(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh database file per test, tables created."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A session for arranging data; committed at the end of the test."""
    async with session_factory() as session:
        yield session
        await session.commit()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        WORKFLOW_STEP_BUDGET=10,
        JOB_MAX_ATTEMPTS=3,
        JOB_RETRY_BASE_DELAY_SECONDS=60.0,
        JOB_RETRY_MAX_DELAY_SECONDS=3600.0,
        JOB_BATCH_SIZE=50,
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def collaborators():
    return FakeCollaborators()


@pytest.fixture
def engine(session_factory, collaborators, settings, clock) -> AutomationEngine:
    return AutomationEngine(session_factory, collaborators, settings=settings, clock=clock)


@pytest.fixture
def company_id() -> str:
    return f"company-{uuid4().hex[:8]}"


@pytest.fixture
def make_workflow(session_factory, company_id):
    """Create (and commit) a workflow; returns it with its steps loaded."""

    async def _make(steps=None, **fields):
        owner = fields.pop("company_id", company_id)
        fields.setdefault("name", "Test Workflow")
        fields.setdefault("trigger_type", "manual")
        async with session_factory() as session:
            async with session.begin():
                workflow = await WorkflowService(session).create_workflow(
                    company_id=owner,
                    steps=steps or [],
                    **fields,
                )
        return workflow

    return _make


@pytest.fixture
def drain(engine):
    """Run due jobs until nothing is due at the clock's current time."""

    async def _drain(rounds: int = 10) -> int:
        processed = 0
        for _ in range(rounds):
            summary = await engine.run_due_jobs()
            if summary.fetched == 0:
                break
            processed += summary.fetched
        return processed

    return _drain


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory, engine):
    """A FastAPI app wired to the test database and engine."""
    from app.dependencies import get_db, get_engine
    from app.main import create_app

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app()
    test_app.dependency_overrides[get_db] = _test_db
    test_app.dependency_overrides[get_engine] = lambda: engine
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


@pytest.fixture
def tenant_headers(company_id) -> dict:
    return {"X-Company-Id": company_id}
