"""
Shared fixtures: a throwaway SQLite database, an in-memory cache and a
Network helper that writes users and orders with consistent team paths.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from teamperf.config import Settings
from teamperf.core.team_path import TeamPath
from teamperf.database import Base, create_session_factory
from teamperf.models import Order, OrderStatus, User, UserLevel, UserStatus
from teamperf.services.cache_service import CacheService, InMemoryCache
from teamperf.services.performance import PerformanceService

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
IN_MARCH = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)
IN_FEBRUARY = datetime(2024, 2, 10, 9, 0, tzinfo=timezone.utc)
JOINED = datetime(2023, 6, 1, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


class Network:
    """Writes a referral tree and its orders straight into the database."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.paths: dict[str, TeamPath] = {}

    async def user(
        self,
        user_id: str,
        parent: Optional[str] = None,
        level: UserLevel = UserLevel.VIP,
        status: UserStatus = UserStatus.ACTIVE,
        created_at: datetime = JOINED,
    ) -> str:
        # Top-level users hang off a synthetic "root" segment with no user row
        if parent is None:
            path = TeamPath(("root", user_id))
        else:
            path = self.paths[parent].child(user_id)
        self.paths[user_id] = path

        async with self.session_factory() as session:
            session.add(User(
                id=user_id,
                nickname=user_id.upper(),
                level=level.value,
                status=status.value,
                parent_id=parent,
                team_path=str(path),
                created_at=created_at,
            ))
            if parent is not None:
                referrer = await session.get(User, parent)
                referrer.direct_count += 1
            await session.commit()
        return user_id

    async def chain(self, prefix: str, length: int, parent: Optional[str] = None) -> list[str]:
        """length users, each referred by the previous one."""
        ids = []
        for i in range(length):
            ids.append(await self.user(f"{prefix}{i}", parent=ids[-1] if ids else parent))
        return ids

    async def order(
        self,
        seller: str,
        amount,
        buyer: str = "buyer1",
        status: OrderStatus = OrderStatus.PAID,
        created_at: datetime = IN_MARCH,
    ) -> str:
        if buyer not in self.paths:
            await self.user(buyer, level=UserLevel.NORMAL)
        async with self.session_factory() as session:
            order = Order(
                buyer_id=buyer,
                seller_id=seller,
                total_amount=Decimal(str(amount)),
                status=status.value,
                created_at=created_at,
            )
            session.add(order)
            await session.commit()
            return order.id


@pytest.fixture
def config():
    return Settings(_env_file=None, REDIS_URL=None, PERFORMANCE_MAX_CONCURRENCY=4)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'performance.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def cache():
    return CacheService(InMemoryCache(), namespace="test")


@pytest.fixture
def network(session_factory):
    return Network(session_factory)


@pytest.fixture
def service(session_factory, cache, config):
    return PerformanceService.create(session_factory, cache, config=config, clock=fixed_clock)
