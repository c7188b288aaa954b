"""
Background Jobs Module

Handles scheduled tasks for:
- Performance cache warmup
- Expired cache cleanup
"""

from teamperf.jobs.scheduler import (
    scheduler,
    start_scheduler,
    shutdown_scheduler,
    register_jobs,
    get_job_status,
)
from teamperf.jobs.cache_jobs import warm_performance_cache, cleanup_expired_cache

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "register_jobs",
    "get_job_status",
    "warm_performance_cache",
    "cleanup_expired_cache",
]
