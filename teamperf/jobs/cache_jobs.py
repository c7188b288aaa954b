"""
Cache Management Jobs

Background jobs that keep the performance cache warm and bounded.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, and_

from teamperf.database import async_session_factory
from teamperf.models.user import User, UserStatus, RANKED_LEVELS
from teamperf.schemas.performance import LeaderboardType
from teamperf.services.cache_service import CacheService, InMemoryCache, get_cache
from teamperf.services.performance import PerformanceService

logger = logging.getLogger(__name__)


async def warm_performance_cache(service: Optional[PerformanceService] = None) -> dict:
    """
    Precompute current-month metrics for ranked users and the three leaderboards.

    Runs every CACHE_WARMUP_INTERVAL_MINUTES so that dashboard reads hit the cache.
    """
    if service is None:
        service = PerformanceService.create(async_session_factory, get_cache())

    logger.info("Starting performance cache warmup...")
    start_time = datetime.now(timezone.utc)

    async with service.session_factory() as session:
        result = await session.execute(
            select(User.id).where(
                and_(
                    User.status == UserStatus.ACTIVE.value,
                    User.level.in_(RANKED_LEVELS),
                )
            )
        )
        user_ids = list(result.scalars().all())

    report = await service.warmup_cache(user_ids)

    boards = 0
    for board_type in LeaderboardType:
        outcome = await service.get_leaderboard(board_type, report.period)
        if outcome.ok:
            boards += 1

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Performance cache warmup completed in {duration:.2f}s: "
        f"{report.succeeded}/{report.requested} users, {boards} leaderboards"
    )
    return {
        "period": report.period,
        "users_warmed": report.succeeded,
        "users_failed": report.failed,
        "leaderboards_warmed": boards,
        "duration_seconds": duration,
    }


async def cleanup_expired_cache(cache: Optional[CacheService] = None) -> int:
    """Prune expired entries from the in-memory backend; Redis expires keys itself."""
    cache = cache or get_cache()
    if not isinstance(cache.backend, InMemoryCache):
        return 0
    removed = await cache.backend.cleanup_expired()
    if removed:
        logger.info(f"Removed {removed} expired cache entries")
    return removed
