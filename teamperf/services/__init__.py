# Services module
from teamperf.services.cache_service import CacheService, get_cache, build_cache
from teamperf.services.performance import PerformanceService

__all__ = [
    "CacheService",
    "get_cache",
    "build_cache",
    "PerformanceService",
]
