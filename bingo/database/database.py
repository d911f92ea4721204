"""
Database Connection and Initialization

This module handles database connection setup, initialization,
and provides the database session management.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import MetaData

from ..errors import PersistenceError
from ..utils.config import get_settings
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)

# Database metadata and base class
metadata = MetaData()
Base = declarative_base(metadata=metadata)

# Global database engine and session factory
engine = None
SessionLocal = None


def to_async_url(database_url: str) -> str:
    """Convert a plain SQLite/PostgreSQL URL to its asyncio driver form."""
    if database_url.startswith("sqlite:///"):
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


async def init_database(database_url: Optional[str] = None) -> None:
    """
    Initialize the database connection and create tables.

    This function sets up the async database engine and creates
    all necessary tables if they don't exist.

    Args:
        database_url: Overrides DATABASE_URL from settings
    """
    global engine, SessionLocal

    settings = get_settings()

    try:
        database_url = to_async_url(database_url or settings.database_url)

        # Create async engine
        engine = create_async_engine(
            database_url,
            echo=settings.debug,  # Log SQL queries in debug mode
        )

        # Create session factory
        SessionLocal = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Import all models to ensure they're registered with SQLAlchemy
        from .models import Game, GamePlayer, GameWinner  # noqa: F401

        # Create all tables
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized successfully - database_url: {database_url}")

    except Exception as e:
        logger.error(f"Failed to initialize database - error: {str(e)}")
        raise


async def get_db_session() -> AsyncSession:
    """
    Get a database session.

    Returns:
        AsyncSession: Database session for queries
    """
    if SessionLocal is None:
        raise PersistenceError("Database not initialized. Call init_database() first.")

    return SessionLocal()


async def close_database() -> None:
    """
    Close the database connection.

    This should be called during application shutdown.
    """
    global engine, SessionLocal

    if engine:
        await engine.dispose()
        engine = None
        SessionLocal = None
        logger.info("Database connection closed")


# Context manager for database sessions
class DatabaseSession:
    """
    Context manager for database sessions with automatic cleanup.

    Usage:
        async with DatabaseSession() as session:
            # Perform database operations
            result = await session.execute(query)
    """

    def __init__(self):
        self.session = None

    async def __aenter__(self) -> AsyncSession:
        self.session = await get_db_session()
        return self.session

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            try:
                if exc_type is not None:
                    await self.session.rollback()
                else:
                    await self.session.commit()
            finally:
                await self.session.close()
