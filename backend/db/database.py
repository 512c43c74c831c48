"""SQLAlchemy async database setup and engine configuration."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings

settings = get_settings()


def create_db_engine(database_url: str = None):
    """Create and configure async SQLAlchemy engine.

    Args:
        database_url: Optional override of ``DATABASE_URL``.

    Returns:
        Async SQLAlchemy engine instance.
    """
    url = database_url or settings.DATABASE_URL
    is_sqlite = url.startswith("sqlite")
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if not is_sqlite:
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,
        )
    db_engine = create_async_engine(url, **kwargs)
    if is_sqlite:
        enable_sqlite_foreign_keys(db_engine)
    return db_engine


def enable_sqlite_foreign_keys(db_engine) -> None:
    """Turn on FK enforcement (and ON DELETE actions) for SQLite connections."""

    @event.listens_for(db_engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_session_factory(engine) -> async_sessionmaker:
    """Create async session factory.

    Args:
        engine: SQLAlchemy async engine instance.

    Returns:
        Async sessionmaker instance.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory instances
engine = create_db_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(db_engine=None):
    """Create all tables registered on the declarative base.

    This should be called once at application startup.
    """
    from db.base import Base
    import db.models  # noqa: F401  registers models on Base.metadata

    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections.

    This should be called at application shutdown.
    """
    await engine.dispose()
