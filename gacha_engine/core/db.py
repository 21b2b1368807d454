from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.config import settings

engine = create_async_engine(settings.db_url)


def create_session(bind: AsyncEngine = engine) -> AsyncSession:
    return AsyncSession(bind, autoflush=False, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession]:
    async with create_session() as session:
        yield session


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create missing tables for every registered model."""
    import gacha_engine.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
