"""
Database Session Management - Async SQLAlchemy engine for the RADIUS database.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hotspot.config import Settings


def create_radius_engine(settings: Settings) -> AsyncEngine:
    """Create the engine for the FreeRADIUS SQL backend."""
    return create_async_engine(
        settings.radius_database_url,
        pool_size=5,
        max_overflow=5,
        pool_timeout=settings.enforcer_timeout_seconds,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
