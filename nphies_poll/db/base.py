"""Database engine, session factory and declarative base."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from nphies_poll.core.config import get_settings

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./nphies_poll.db"


def get_database_url() -> str:
    """Return the configured database URL, falling back to local SQLite."""
    return get_settings().DATABASE_URL or DEFAULT_DATABASE_URL


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


engine = create_async_engine(get_database_url(), echo=False, future=True)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that is closed after the request."""
    async with AsyncSessionLocal() as session:
        yield session
