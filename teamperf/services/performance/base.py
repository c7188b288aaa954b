"""
Shared plumbing for the performance calculators.

Each fetch opens its own session from the injected session factory, so
independent fetches can run concurrently under asyncio.gather without
sharing an AsyncSession.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from teamperf.config import settings, Settings
from teamperf.core.exceptions import PerformanceDataError
from teamperf.core.period import Period
from teamperf.models.order import Order, QUALIFYING_STATUSES
from teamperf.models.user import User
from teamperf.services.cache_service import CacheService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def qualifying_orders(period: Optional[Period] = None, start: Optional[datetime] = None,
                      end: Optional[datetime] = None):
    """WHERE clause for qualifying orders inside a period or an explicit window."""
    clauses = [Order.status.in_(QUALIFYING_STATUSES)]
    if period is not None:
        start, end = period.start, period.end
    if start is not None:
        clauses.append(Order.created_at >= start)
    if end is not None:
        clauses.append(Order.created_at < end)
    return and_(*clauses)


class PerformanceCalculatorBase:
    """Session, cache and settings shared by every calculator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        config: Settings = settings,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.config = config
        self.clock = clock

    async def _execute(self, operation: str, stmt, consume: Callable[[Any], Any]):
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                return consume(result)
            except SQLAlchemyError as e:
                logger.error(f"Failed to fetch {operation}: {e}")
                raise PerformanceDataError(operation, e) from e

    async def _all(self, operation: str, stmt) -> list:
        return await self._execute(operation, stmt, lambda r: list(r.all()))

    async def _one(self, operation: str, stmt) -> Any:
        return await self._execute(operation, stmt, lambda r: r.one())

    async def _scalar(self, operation: str, stmt) -> Any:
        return await self._execute(operation, stmt, lambda r: r.scalar())

    async def _first(self, operation: str, stmt) -> Any:
        return await self._execute(operation, stmt, lambda r: r.scalars().first())

    async def _count_users(self, operation: str, where) -> int:
        count = await self._scalar(operation, select(func.count(User.id)).where(where))
        return int(count or 0)
