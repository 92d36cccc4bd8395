"""Async database engine and session factory."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dealhunt.config import settings
from dealhunt.db.models import Base

engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
