"""Async engine, session factory and schema bootstrap for payment records."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from paygate.config import settings
from paygate.models.payment import Base

engine = create_async_engine(settings.database_url, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Create the payments, webhook_logs and audit_logs tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    await engine.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; the payment store commits each write itself."""
    async with async_session() as session:
        yield session
