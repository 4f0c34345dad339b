"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.

The engine and session factory are created by the application lifespan
and stored on `app.state`; nothing here opens a connection at import time.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import Settings

# Create declarative base for models
Base = declarative_base()


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by `settings`."""
    options = {"echo": settings.db_echo, "future": True}
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create async session factory bound to `engine`."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def get_db(request: Request):
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
