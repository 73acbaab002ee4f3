from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import settings

# Create Async Engine
engine = create_async_engine(
    settings.DATABASE_URL, echo=settings.LOG_LEVEL == "DEBUG", future=True, pool_pre_ping=True
)

# Async Session Factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


class Base(DeclarativeBase):
    pass


async def create_tables() -> None:
    """Create all tables registered on Base.metadata."""
    # Import models so they are registered with Base.metadata
    import certissuer.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for getting async session (for background tasks/scripts)."""
    async with AsyncSessionLocal() as session:
        yield session
