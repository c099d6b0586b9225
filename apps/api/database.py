"""
Async database engine, session factory, and request-scoped session dependency.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings


def _async_database_url(url: str) -> str:
    """Map plain driver URLs onto their async drivers."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


engine = create_async_engine(_async_database_url(settings.DATABASE_URL), pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield one session per request; nothing is shared across requests."""
    async with async_session_maker() as session:
        yield session


async def insert_if_absent(db: AsyncSession, model, values: dict) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Returns True when this call created the row.
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        raise RuntimeError(f"insert_if_absent is not supported on {dialect_name}")

    statement = dialect_insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = await db.execute(statement)
    return result.rowcount == 1
