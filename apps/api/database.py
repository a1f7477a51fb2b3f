"""
Async database engine, session factory and declarative base.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from config import settings


def _async_database_url(url: str) -> str:
    """Map sync driver URLs onto their async counterparts."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    return url


engine = create_async_engine(
    _async_database_url(settings.DATABASE_URL),
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """ORM base class."""
    pass


async def get_db():
    """FastAPI dependency yielding a database session."""
    async with async_session_maker() as session:
        yield session
