"""Initialize database tables."""
import asyncio
import logging

from teamperf.config import settings
from teamperf.database import init_db

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def init():
    """Create all tables."""
    logger.info("Creating database tables...")
    await init_db()
    logger.info("Database tables created successfully!")


if __name__ == "__main__":
    asyncio.run(init())
