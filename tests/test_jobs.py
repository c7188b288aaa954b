from apscheduler.schedulers.asyncio import AsyncIOScheduler

from teamperf.jobs import cleanup_expired_cache, get_job_status, register_jobs, warm_performance_cache
from teamperf.models import UserLevel
from teamperf.services.cache_service import CacheService, RedisCache


def test_register_jobs():
    scheduler = AsyncIOScheduler()
    register_jobs(scheduler)

    assert {job.id for job in scheduler.get_jobs()} == {
        "warm_performance_cache",
        "cleanup_expired_cache",
    }


def test_job_status_of_an_unstarted_scheduler():
    scheduler = AsyncIOScheduler()
    register_jobs(scheduler)

    status = {job["id"]: job for job in get_job_status(scheduler)}

    assert set(status) == {"warm_performance_cache", "cleanup_expired_cache"}
    assert status["warm_performance_cache"]["name"] == "Warm Performance Cache"
    assert status["cleanup_expired_cache"]["next_run_time"] is None
    assert status["cleanup_expired_cache"]["trigger"].startswith("interval")
    assert get_job_status(AsyncIOScheduler()) == []


async def test_warm_performance_cache(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    await network.user("B", parent="A")
    await network.user("N", level=UserLevel.NORMAL)
    await network.order("A", 100)

    summary = await warm_performance_cache(service)

    assert summary["period"] == "2024-03"
    assert summary["users_warmed"] == 2
    assert summary["users_failed"] == 0
    assert summary["leaderboards_warmed"] == 3

    cached = await service.cache.get("personal:A:2024-03")
    assert cached["sales_amount"] == 100


async def test_cleanup_expired_cache(cache):
    await cache.set("stale", 1, ttl=0)
    await cache.set("fresh", 2, ttl=60)

    assert await cleanup_expired_cache(cache) == 1
    assert await cache.get("fresh") == 2


async def test_cleanup_skips_redis():
    cache = CacheService(RedisCache("redis://localhost:6379/0"), namespace="test")
    assert await cleanup_expired_cache(cache) == 0
