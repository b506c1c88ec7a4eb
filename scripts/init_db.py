import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import build_engine
from core.config import settings
from core.logging import setup_logging
# Importing the package registers every table
from models import Base, Category, Location

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ["Resistors", "Capacitors", "ICs", "Connectors"]

DEFAULT_LOCATIONS = [
    ("Box A", "Red huge box"),
    ("Box B", "Blue small box"),
]


async def seed_master_data(session: AsyncSession) -> None:
    """Insert default categories / locations into empty tables only"""
    if not (await session.execute(select(func.count()).select_from(Category))).scalar():
        session.add_all(
            Category(name=name, display_order=index)
            for index, name in enumerate(DEFAULT_CATEGORIES)
        )
        logger.info(f"Seeded {len(DEFAULT_CATEGORIES)} categories")

    if not (await session.execute(select(func.count()).select_from(Location))).scalar():
        session.add_all(
            Location(name=name, description=description, display_order=index)
            for index, (name, description) in enumerate(DEFAULT_LOCATIONS)
        )
        logger.info(f"Seeded {len(DEFAULT_LOCATIONS)} locations")

    await session.commit()


async def init_database():
    logger.info("Connecting to database...")
    engine = build_engine(settings.DATABASE_URL)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    async with session_maker() as session:
        await seed_master_data(session)

    # Local uploads root with its placeholder, so health checks pass on a fresh install
    if settings.BLOB_BACKEND.lower() == "local":
        os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
        placeholder = os.path.join(settings.UPLOAD_DIR, ".gitkeep")
        if not os.path.exists(placeholder):
            open(placeholder, "a").close()

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
