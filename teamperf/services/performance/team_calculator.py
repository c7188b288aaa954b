"""
Team performance: aggregates over a user's whole downstream team.

The team is resolved with one prefix match on the materialized team_path
(see teamperf.core.team_path), whatever the depth of the tree. Aggregates
join orders to that prefix match instead of passing member id lists around.
"""
import asyncio
import logging

from sqlalchemy import select, func, and_

from teamperf.core.exceptions import UserNotFoundError
from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.core.team_path import TeamPath
from teamperf.models.order import Order
from teamperf.models.user import User, UserLevel, UserStatus
from teamperf.schemas.performance import LevelBucket, TeamMember, TeamMemberStats, TeamPerformance
from teamperf.services.performance.base import PerformanceCalculatorBase, qualifying_orders

logger = logging.getLogger(__name__)


class TeamPerformanceCalculator(PerformanceCalculatorBase):
    """Team membership and team-wide sales aggregates."""

    @property
    def includes_self(self) -> bool:
        return self.config.TEAM_INCLUDES_SELF

    async def get_team_path(self, user_id: str) -> TeamPath:
        """Stored team path of a user; raises UserNotFoundError if the user does not exist."""
        path = await self._scalar(
            "team path",
            select(User.team_path).where(User.id == user_id)
        )
        if path is None:
            raise UserNotFoundError(user_id)
        return TeamPath.parse(path)

    @staticmethod
    def members_of(path: TeamPath, include_self: bool = False):
        """WHERE clause selecting users below path (and the owner when include_self)."""
        clause = User.team_path.startswith(path.prefix, autoescape=True)
        if include_self:
            return clause
        return and_(clause, User.id != path.owner)

    # ==================== Members ====================

    async def get_all_team_members(self, user_id: str) -> list[TeamMember]:
        """Every user below user_id in the referral tree, excluding user_id itself."""
        return await self.cache.remember(
            f"team_members:{user_id}",
            lambda: self._fetch_members(user_id),
            ttl=self.config.TEAM_MEMBERS_CACHE_TTL,
            tags=[f"user:{user_id}"],
            model=list[TeamMember],
        )

    async def _fetch_members(self, user_id: str) -> list[TeamMember]:
        owner = await self.get_team_path(user_id)
        rows = await self._all(
            "team members",
            select(
                User.id, User.nickname, User.level, User.status,
                User.parent_id, User.team_path,
            ).where(self.members_of(owner)).order_by(User.team_path)
        )
        return [
            TeamMember(
                user_id=row.id,
                nickname=row.nickname,
                level=row.level,
                status=row.status,
                parent_id=row.parent_id,
                depth=TeamPath.parse(row.team_path).depth_below(owner),
            )
            for row in rows
        ]

    async def get_team_member_stats(self, user_id: str) -> TeamMemberStats:
        owner = await self.get_team_path(user_id)
        month = Period.current_month(self.clock())
        total, active, new_this_month, direct = await asyncio.gather(
            self._count_users("team member total", self.members_of(owner)),
            self._count_users(
                "team active members",
                and_(self.members_of(owner), User.status == UserStatus.ACTIVE.value),
            ),
            self._count_users(
                "team new members",
                and_(
                    self.members_of(owner),
                    User.created_at >= month.start,
                    User.created_at < month.end,
                ),
            ),
            self._count_users("direct members", User.parent_id == user_id),
        )
        return TeamMemberStats(
            user_id=user_id,
            total_members=total,
            active_members=active,
            new_members_this_month=new_this_month,
            direct_members=direct,
        )

    # ==================== Performance ====================

    async def calculate_team_performance(
        self,
        user_id: str,
        period: PeriodLike = None
    ) -> TeamPerformance:
        period = resolve_period(period, self.clock())
        return await self.cache.remember(
            f"team:{user_id}:{period.label}",
            lambda: self._compute(user_id, period),
            ttl=self.config.TEAM_PERFORMANCE_CACHE_TTL,
            tags=[f"user:{user_id}", f"period:{period.label}"],
            model=TeamPerformance,
        )

    async def calculate_team_active_rate(self, user_id: str, period: PeriodLike = None) -> float:
        performance = await self.calculate_team_performance(user_id, period)
        return performance.active_rate

    async def _compute(self, user_id: str, period: Period) -> TeamPerformance:
        owner = await self.get_team_path(user_id)

        member_count, totals, active_members, new_members, distribution = await asyncio.gather(
            self._count_users("team member count", self.members_of(owner)),
            self.team_sales_totals(owner, period),
            self._active_member_count(owner, period),
            self._count_users(
                "team new members",
                and_(
                    User.parent_id == user_id,
                    User.created_at >= period.start,
                    User.created_at < period.end,
                ),
            ),
            self._level_distribution(owner, period),
        )
        team_sales, team_orders = totals

        active_rate = active_members / member_count if member_count > 0 else 0.0
        productivity = team_sales / member_count if member_count > 0 else 0.0

        return TeamPerformance(
            user_id=user_id,
            period=period.label,
            member_count=member_count,
            team_sales=round(team_sales, 2),
            team_orders=team_orders,
            new_members=new_members,
            active_members=active_members,
            active_rate=round(active_rate, 4),
            productivity=round(productivity, 2),
            includes_self=self.includes_self,
            level_distribution=distribution,
            calculated_at=self.clock(),
        )

    async def team_sales_totals(self, owner: TeamPath, period: Period) -> tuple[float, int]:
        """(sales, orders) of the team in period, self-inclusive per configuration."""
        row = await self._one(
            "team sales totals",
            select(
                func.coalesce(func.sum(Order.total_amount), 0).label("sales"),
                func.count(Order.id).label("orders"),
            )
            .join(User, User.id == Order.seller_id)
            .where(and_(self.members_of(owner, self.includes_self), qualifying_orders(period)))
        )
        return float(row.sales or 0), int(row.orders or 0)

    async def _active_member_count(self, owner: TeamPath, period: Period) -> int:
        count = await self._scalar(
            "team active sellers",
            select(func.count(func.distinct(Order.seller_id)))
            .join(User, User.id == Order.seller_id)
            .where(and_(self.members_of(owner), qualifying_orders(period)))
        )
        return int(count or 0)

    async def _level_distribution(self, owner: TeamPath, period: Period) -> list[LevelBucket]:
        """Member count and sales per level in one grouped query each."""
        team = self.members_of(owner, self.includes_self)
        counts, sales = await asyncio.gather(
            self._all(
                "team level counts",
                select(User.level, func.count(User.id).label("members"))
                .where(team)
                .group_by(User.level)
            ),
            self._all(
                "team level sales",
                select(User.level, func.coalesce(func.sum(Order.total_amount), 0).label("sales"))
                .join(Order, Order.seller_id == User.id)
                .where(and_(team, qualifying_orders(period)))
                .group_by(User.level)
            ),
        )
        sales_by_level = {row.level: float(row.sales or 0) for row in sales}
        buckets = [
            LevelBucket(
                level=row.level,
                member_count=int(row.members),
                sales=round(sales_by_level.get(row.level, 0.0), 2),
            )
            for row in counts
        ]
        order = {level.value: level.rank for level in UserLevel}
        return sorted(buckets, key=lambda b: order.get(b.level, len(order)))
