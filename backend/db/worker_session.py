"""Worker-safe database sessions for Celery tasks.

Creates a fresh async engine per call to avoid the 'Future attached
to a different loop' error when asyncpg connections are shared
across event loops in forked Celery workers.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from db.database import enable_sqlite_foreign_keys


@asynccontextmanager
async def worker_session_factory():
    """Provide a session factory bound to a loop-local engine.

    The engine's lifecycle is tied to the current event loop.
    Engine components open and commit their own sessions from the factory.

    Usage:
        async with worker_session_factory() as session_factory:
            engine = build_automation_engine(session_factory)
            await engine.run_due_jobs()
    """
    settings = get_settings()
    kwargs = dict(echo=False)
    is_sqlite = settings.DATABASE_URL.startswith("sqlite")
    if not is_sqlite:
        kwargs.update(pool_size=5, max_overflow=5, pool_recycle=300)
    engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    if is_sqlite:
        enable_sqlite_foreign_keys(engine)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )
    try:
        yield session_factory
    finally:
        await engine.dispose()
