"""Async SQLAlchemy engine and session management."""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leave_engine.config import settings

# Async engine for FastAPI
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: one request, one transaction.

    Commits when the endpoint returns, rolls back on any exception so a
    failed leave transition never leaves ledger or attendance writes behind.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def dialect_insert(db: AsyncSession):
    """``insert`` construct with ON CONFLICT support for the session's dialect.

    PostgreSQL in production, SQLite under test; both speak
    ``on_conflict_do_update`` / ``on_conflict_do_nothing``.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert
