import asyncio
import logging

from core.config import settings
from core.database import create_engine
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models import catalog, sync_health  # noqa: F401

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    engine = create_engine(settings)

    try:
        async with engine.begin() as conn:
            logger.info("Creating tables...")
            # Create all tables defined in models
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully.")
    finally:
        await engine.dispose()


def main():
    setup_logging()
    asyncio.run(init_database())


if __name__ == "__main__":
    main()
