from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models across modules."""

    pass


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=20,
    max_overflow=10,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an AsyncSession, auto-closes after request."""
    async with async_session_factory() as session:
        yield session


async def set_local_lock_timeout(db: AsyncSession, timeout_ms: int) -> None:
    """Bound row-lock waits for the current transaction.

    A lock wait longer than this raises LockNotAvailable, which the ledger
    service reports as storage_failure instead of hanging the request.
    """
    # SET LOCAL does not accept bind parameters
    await db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))
