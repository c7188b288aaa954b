"""
APScheduler Configuration

Background job scheduler for performance cache maintenance.

Jobs:
- warm_performance_cache: precompute current-month metrics and leaderboards
- cleanup_expired_cache: prune expired in-memory cache entries
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from teamperf.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


def register_jobs(target: AsyncIOScheduler = scheduler) -> None:
    """Add the performance cache jobs to a scheduler."""
    from teamperf.jobs.cache_jobs import warm_performance_cache, cleanup_expired_cache

    target.add_job(
        warm_performance_cache,
        'interval',
        minutes=settings.CACHE_WARMUP_INTERVAL_MINUTES,
        id='warm_performance_cache',
        name='Warm Performance Cache',
        replace_existing=True,
    )

    target.add_job(
        cleanup_expired_cache,
        'interval',
        minutes=settings.CACHE_CLEANUP_INTERVAL_MINUTES,
        id='cleanup_expired_cache',
        name='Cleanup Expired Cache',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status(target: AsyncIOScheduler = scheduler):
    """Get status of all scheduled jobs."""
    jobs = target.get_jobs()
    status = []
    for job in jobs:
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, 'next_run_time', None)
        status.append({
            'id': job.id,
            'name': job.name,
            'next_run_time': str(next_run) if next_run else None,
            'trigger': str(job.trigger),
        })
    return status
