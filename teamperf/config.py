from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./teamperf.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Team Performance Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_NAMESPACE: str = "teamperf"
    PERSONAL_PERFORMANCE_CACHE_TTL: int = 300  # 5 minutes
    TEAM_PERFORMANCE_CACHE_TTL: int = 180  # 3 minutes
    REFERRAL_PERFORMANCE_CACHE_TTL: int = 300
    TEAM_MEMBERS_CACHE_TTL: int = 600
    REFERRAL_TREE_CACHE_TTL: int = 600
    LEADERBOARD_CACHE_TTL: int = 600  # 10 minutes
    COMMISSION_CACHE_TTL: int = 3600  # 1 hour

    # Team aggregation
    TEAM_INCLUDES_SELF: bool = True  # Owner's own orders count toward team sales

    # Leaderboards
    LEADERBOARD_DEFAULT_LIMIT: int = 50
    LEADERBOARD_SEARCH_LIMIT: int = 1000  # Depth scanned when locating one user's rank
    RANK_DELTA_LOOKBACK_LIMIT: int = 100  # Depth of the previous-period board used for rank deltas

    # Referral / commission
    INDIRECT_REFERRAL_REVENUE_WEIGHT: float = 0.3
    FORECAST_TREND_MONTHS: int = 6
    FORECAST_TREND_WEIGHT: float = 0.6
    FORECAST_CONFIDENCE: float = 0.75

    # Background jobs
    PERFORMANCE_MAX_CONCURRENCY: int = 10
    CACHE_WARMUP_INTERVAL_MINUTES: int = 30
    CACHE_CLEANUP_INTERVAL_MINUTES: int = 10
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('FORECAST_TREND_WEIGHT', 'FORECAST_CONFIDENCE', 'INDIRECT_REFERRAL_REVENUE_WEIGHT')
    @classmethod
    def check_fraction(cls, v):
        if not 0 <= v <= 1:
            raise ValueError("must be between 0 and 1")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
