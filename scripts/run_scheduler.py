"""Run the performance cache jobs until interrupted."""
import asyncio
import logging

from teamperf.config import settings
from teamperf.jobs import get_job_status, start_scheduler, shutdown_scheduler, warm_performance_cache

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Suppress SQLAlchemy logs
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


async def main():
    start_scheduler()
    try:
        # Warm once at startup instead of waiting a full interval
        await warm_performance_cache()
        for job in get_job_status():
            logger.info(f"{job['id']}: next run {job['next_run_time']} ({job['trigger']})")
        await asyncio.Event().wait()
    finally:
        shutdown_scheduler()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
