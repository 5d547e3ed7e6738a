# database.py - Async engine setup for the snapshot document store
import os
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

# Database configuration
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///./opsdesk.db"
)
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"


def create_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an async engine; pooling options only apply to server databases"""
    options = {"echo": SQL_ECHO, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=20, max_overflow=0, pool_recycle=3600)
    return create_async_engine(url, **options)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """Create tables that do not exist yet"""
    from models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine):
    """Close database connection pool"""
    await engine.dispose()
