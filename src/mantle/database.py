"""Database connection and session management.

The engine is owned by an explicitly constructed ``Database`` handle:
- the API process opens one in its lifespan and keeps it on ``app.state``
- each Celery task opens its own and disposes it when the task ends
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mantle.config import Settings


class Database:
    """Engine plus session factory with an explicit open/close lifecycle."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **engine_kwargs: Any) -> "Database":
        """Create a database handle from application settings."""
        options: dict[str, Any] = {
            "echo": settings.debug,
            "pool_pre_ping": True,  # Verify connection before use
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_recycle": 1800,
        }
        options.update(engine_kwargs)
        return cls(create_async_engine(settings.database_url, **options))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Context manager for database sessions.

        Usage:
            async with database.session() as session:
                result = await session.execute(query)
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """Dependency returning the process-wide database handle."""
    return request.app.state.database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting a database session that commits on success."""
    database: Database = request.app.state.database
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
