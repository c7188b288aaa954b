"""
Referral performance: direct referrals (parent_id = user) versus indirect
referrals (the rest of the team) and the revenue each set drives.
"""
import asyncio
import logging
from collections import defaultdict

from sqlalchemy import select, func, and_, or_

from teamperf.core.exceptions import UserNotFoundError
from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.core.team_path import TeamPath
from teamperf.models.order import Order
from teamperf.models.user import User, UserStatus
from teamperf.schemas.performance import ReferralNode, ReferralPerformance, ReferralStats
from teamperf.services.performance.base import PerformanceCalculatorBase, qualifying_orders
from teamperf.services.performance.rates import MAX_TIERED_DEPTH
from teamperf.services.performance.team_calculator import TeamPerformanceCalculator

logger = logging.getLogger(__name__)


class ReferralPerformanceCalculator(PerformanceCalculatorBase):
    """Direct/indirect referral counts and referral-driven revenue."""

    def __init__(self, session_factory, cache, team_calculator: TeamPerformanceCalculator, **kwargs):
        super().__init__(session_factory, cache, **kwargs)
        self.team = team_calculator

    async def calculate_referral_performance(
        self,
        user_id: str,
        period: PeriodLike = None
    ) -> ReferralPerformance:
        period = resolve_period(period, self.clock())
        return await self.cache.remember(
            f"referral:{user_id}:{period.label}",
            lambda: self._compute(user_id, period),
            ttl=self.config.REFERRAL_PERFORMANCE_CACHE_TTL,
            tags=[f"user:{user_id}", f"period:{period.label}"],
            model=ReferralPerformance,
        )

    def _indirect_of(self, owner: TeamPath):
        return and_(
            TeamPerformanceCalculator.members_of(owner),
            or_(User.parent_id.is_(None), User.parent_id != owner.owner),
        )

    def _joined_in(self, user_id: str, period: Period):
        return and_(
            User.parent_id == user_id,
            User.created_at >= period.start,
            User.created_at < period.end,
        )

    async def _compute(self, user_id: str, period: Period) -> ReferralPerformance:
        owner = await self.team.get_team_path(user_id)

        (direct_count, active_direct, indirect_count, sales_by_depth,
         new_directs, previous_new_directs) = await asyncio.gather(
            self._count_users("direct referrals", User.parent_id == user_id),
            self._count_users(
                "active direct referrals",
                and_(User.parent_id == user_id, User.status == UserStatus.ACTIVE.value),
            ),
            self._count_users("indirect referrals", self._indirect_of(owner)),
            self.sales_by_depth(owner, period),
            self._count_users("new direct referrals", self._joined_in(user_id, period)),
            self._count_users(
                "previous new direct referrals", self._joined_in(user_id, period.previous())
            ),
        )

        direct_sales = sales_by_depth.get(1, 0.0)
        indirect_by_depth = {d: round(v, 2) for d, v in sales_by_depth.items() if d >= 2}
        indirect_sales = sum(indirect_by_depth.values())
        untiered = sum(v for d, v in indirect_by_depth.items() if d > MAX_TIERED_DEPTH)
        if untiered > 0:
            logger.warning(
                f"Referral sales for {user_id} in {period} include {untiered:.2f} "
                f"below depth {MAX_TIERED_DEPTH}, which earns no commission"
            )

        weight = self.config.INDIRECT_REFERRAL_REVENUE_WEIGHT
        if previous_new_directs > 0:
            network_growth = (new_directs - previous_new_directs) / previous_new_directs
        else:
            network_growth = 1.0 if new_directs > 0 else 0.0

        return ReferralPerformance(
            user_id=user_id,
            period=period.label,
            direct_referrals=direct_count,
            indirect_referrals=indirect_count,
            direct_sales=round(direct_sales, 2),
            indirect_sales=round(indirect_sales, 2),
            referral_revenue=round(direct_sales + indirect_sales * weight, 2),
            active_referrals=active_direct,
            conversion_rate=round(active_direct / direct_count, 4) if direct_count > 0 else 0.0,
            new_direct_referrals=new_directs,
            network_growth=round(network_growth, 4),
            indirect_sales_by_depth=indirect_by_depth,
            untiered_indirect_sales=round(untiered, 2),
            calculated_at=self.clock(),
        )

    async def sales_by_depth(self, owner: TeamPath, period: Period) -> dict[int, float]:
        """Qualifying team sales in period keyed by depth below owner (1 = direct)."""
        rows = await self._all(
            "referral sales by seller",
            select(User.team_path, func.coalesce(func.sum(Order.total_amount), 0).label("sales"))
            .join(Order, Order.seller_id == User.id)
            .where(and_(TeamPerformanceCalculator.members_of(owner), qualifying_orders(period)))
            .group_by(User.id, User.team_path)
        )
        totals = defaultdict(float)
        for row in rows:
            depth = TeamPath.parse(row.team_path).depth_below(owner)
            totals[depth] += float(row.sales or 0)
        return dict(totals)

    # ==================== Tree & stats ====================

    async def get_referral_tree(self, user_id: str, max_depth: int = 3) -> ReferralNode:
        """Nested referral tree below user_id, cut at max_depth generations."""
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        return await self.cache.remember(
            f"referral_tree:{user_id}:{max_depth}",
            lambda: self._build_tree(user_id, max_depth),
            ttl=self.config.REFERRAL_TREE_CACHE_TTL,
            tags=[f"user:{user_id}"],
            model=ReferralNode,
        )

    async def _build_tree(self, user_id: str, max_depth: int) -> ReferralNode:
        root = await self._first("referral tree root", select(User).where(User.id == user_id))
        if root is None:
            raise UserNotFoundError(user_id)
        members = await self.team.get_all_team_members(user_id)

        nodes = {user_id: {"user_id": root.id, "nickname": root.nickname,
                           "level": root.level, "depth": 0, "children": []}}
        # Members arrive ordered by team_path, so parents precede children
        for member in members:
            if member.depth > max_depth:
                continue
            parent = nodes.get(member.parent_id)
            if parent is None:
                continue
            node = {"user_id": member.user_id, "nickname": member.nickname,
                    "level": member.level, "depth": member.depth, "children": []}
            parent["children"].append(node)
            nodes[member.user_id] = node
        return ReferralNode.model_validate(nodes[user_id])

    async def get_referral_stats(self, user_id: str) -> ReferralStats:
        owner = await self.team.get_team_path(user_id)
        month = Period.current_month(self.clock())
        total_direct, total_indirect, active_direct, new_direct = await asyncio.gather(
            self._count_users("direct referrals", User.parent_id == user_id),
            self._count_users("indirect referrals", self._indirect_of(owner)),
            self._count_users(
                "active direct referrals",
                and_(User.parent_id == user_id, User.status == UserStatus.ACTIVE.value),
            ),
            self._count_users("new direct referrals", self._joined_in(user_id, month)),
        )
        return ReferralStats(
            user_id=user_id,
            total_direct=total_direct,
            total_indirect=total_indirect,
            active_direct=active_direct,
            new_direct_this_month=new_direct,
        )
