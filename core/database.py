"""
Database engine and session management with SQLAlchemy async
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(async_engine: AsyncEngine) -> None:
    """
    Turn on foreign-key enforcement for every new SQLite connection.

    SQLite ships with enforcement off; the restore and wipe paths
    switch it off explicitly for their own transaction only.
    """
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for the given URL"""
    async_engine = create_async_engine(
        database_url,
        echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL == "DEBUG",
        poolclass=NullPool,  # For async, connection pooling handled differently
        future=True
    )
    enable_sqlite_foreign_keys(async_engine)
    return async_engine


# Create async engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def get_session() -> AsyncSession:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
