"""Async database engine, session factory and health check."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    options: dict[str, Any] = {"echo": settings.db_echo}
    # SQLite drivers reject queue-pool sizing
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(settings.database_url, **options)


engine = build_engine(get_settings())

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create the platform tables in the default schema.

    Per-tenant schemas are provisioned separately when a tenant is created.
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def ping(session: AsyncSession) -> None:
    """Round-trip a trivial query; raises on connection failure."""
    await session.execute(text("SELECT 1"))
