"""
Leaderboards over a period: personal sales, team sales and direct referrals.

Each board is one aggregate query sorted by value. Rank deltas diff the
board against the previous period's base board (no deltas of its own), so
building a board costs at most two aggregate queries and never recurses.
"""
import logging
from statistics import median
from typing import Optional

from sqlalchemy import select, func, and_, desc
from sqlalchemy.orm import aliased

from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.models.order import Order
from teamperf.models.user import User, UserStatus, RANKED_LEVELS
from teamperf.schemas.performance import (
    Leaderboard,
    LeaderboardItem,
    LeaderboardSummary,
    LeaderboardType,
    UserRank,
)
from teamperf.services.performance.base import PerformanceCalculatorBase, qualifying_orders

logger = logging.getLogger(__name__)


class RankingService(PerformanceCalculatorBase):
    """Builds personal, team and referral leaderboards with rank deltas."""

    @staticmethod
    def _board_type(board_type) -> LeaderboardType:
        try:
            return LeaderboardType(board_type)
        except ValueError:
            raise ValueError(
                f"Unknown leaderboard type '{board_type}': expected personal, team or referral"
            ) from None

    def _check_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.config.LEADERBOARD_DEFAULT_LIMIT
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return limit

    # ==================== Leaderboards ====================

    async def get_performance_leaderboard(
        self,
        board_type,
        period: PeriodLike = None,
        limit: Optional[int] = None,
    ) -> Leaderboard:
        """Top `limit` entries for period with rank changes against the previous period."""
        board_type = self._board_type(board_type)
        period = resolve_period(period, self.clock())
        limit = self._check_limit(limit)
        return await self.cache.remember(
            f"leaderboard:{board_type.value}:{period.label}:{limit}",
            lambda: self._with_rank_changes(board_type, period, limit),
            ttl=self.config.LEADERBOARD_CACHE_TTL,
            tags=["leaderboard", f"period:{period.label}"],
            model=Leaderboard,
        )

    async def get_base_leaderboard(
        self,
        board_type,
        period: PeriodLike = None,
        limit: Optional[int] = None,
    ) -> Leaderboard:
        """Leaderboard without rank changes; cached separately from the enriched board."""
        board_type = self._board_type(board_type)
        period = resolve_period(period, self.clock())
        limit = self._check_limit(limit)
        return await self.cache.remember(
            f"leaderboard_base:{board_type.value}:{period.label}:{limit}",
            lambda: self._build(board_type, period, limit),
            ttl=self.config.LEADERBOARD_CACHE_TTL,
            tags=["leaderboard", f"period:{period.label}"],
            model=Leaderboard,
        )

    async def _with_rank_changes(
        self,
        board_type: LeaderboardType,
        period: Period,
        limit: int
    ) -> Leaderboard:
        current = await self.get_base_leaderboard(board_type, period, limit)
        if not current.items:
            return current

        previous = await self.get_base_leaderboard(
            board_type, period.previous(), max(limit, self.config.RANK_DELTA_LOOKBACK_LIMIT)
        )
        previous_ranks = {item.user_id: item.rank for item in previous.items}

        items = []
        for item in current.items:
            previous_rank = previous_ranks.get(item.user_id)
            if previous_rank is None:
                items.append(item.model_copy(update={"is_new_entrant": True}))
            else:
                items.append(item.model_copy(update={
                    "previous_rank": previous_rank,
                    "rank_change": previous_rank - item.rank,
                }))
        return current.model_copy(update={"items": items})

    async def _build(self, board_type: LeaderboardType, period: Period, limit: int) -> Leaderboard:
        if board_type is LeaderboardType.PERSONAL:
            rows = await self._personal_rows(period, limit)
        elif board_type is LeaderboardType.TEAM:
            rows = await self._team_rows(period, limit)
        else:
            rows = await self._referral_rows(period, limit)

        items = [
            LeaderboardItem(
                user_id=row["user_id"],
                nickname=row["nickname"],
                level=row["level"],
                value=round(row["value"], 2),
                rank=rank,
                referral_sales=row.get("referral_sales"),
            )
            for rank, row in enumerate(rows, start=1)
        ]
        logger.info(f"Built {board_type.value} leaderboard for {period}: {len(items)} entries")
        return Leaderboard(
            type=board_type,
            period=period.label,
            limit=limit,
            items=items,
            generated_at=self.clock(),
        )

    def _candidates(self, user):
        return and_(user.status == UserStatus.ACTIVE.value, user.level.in_(RANKED_LEVELS))

    async def _personal_rows(self, period: Period, limit: int) -> list[dict]:
        value = func.sum(Order.total_amount).label("value")
        rows = await self._all(
            "personal leaderboard",
            select(User.id, User.nickname, User.level, value)
            .join(Order, Order.seller_id == User.id)
            .where(and_(self._candidates(User), qualifying_orders(period)))
            .group_by(User.id, User.nickname, User.level)
            .having(func.sum(Order.total_amount) > 0)
            .order_by(desc(value), User.id)
            .limit(limit)
        )
        return [
            {"user_id": r.id, "nickname": r.nickname, "level": r.level, "value": float(r.value)}
            for r in rows
        ]

    async def _team_rows(self, period: Period, limit: int) -> list[dict]:
        leader = aliased(User, name="leader")
        member = aliased(User, name="member")
        value = func.sum(Order.total_amount).label("value")

        # Each leader joined to every member whose path extends the leader's path;
        # a substring comparison, since ids may contain LIKE wildcards
        team = func.substr(member.team_path, 1, func.length(leader.team_path)) == leader.team_path
        if not self.config.TEAM_INCLUDES_SELF:
            team = and_(team, member.id != leader.id)

        rows = await self._all(
            "team leaderboard",
            select(leader.id, leader.nickname, leader.level, value)
            .select_from(leader)
            .join(member, team)
            .join(Order, Order.seller_id == member.id)
            .where(and_(self._candidates(leader), qualifying_orders(period)))
            .group_by(leader.id, leader.nickname, leader.level)
            .having(func.sum(Order.total_amount) > 0)
            .order_by(desc(value), leader.id)
            .limit(limit)
        )
        return [
            {"user_id": r.id, "nickname": r.nickname, "level": r.level, "value": float(r.value)}
            for r in rows
        ]

    async def _referral_rows(self, period: Period, limit: int) -> list[dict]:
        referrers = await self._all(
            "referral leaderboard",
            select(User.id, User.nickname, User.level, User.direct_count)
            .where(and_(self._candidates(User), User.direct_count > 0))
            .order_by(desc(User.direct_count), User.id)
            .limit(limit)
        )
        if not referrers:
            return []

        referrer_ids = [r.id for r in referrers]
        sales_rows = await self._all(
            "referral leaderboard sales",
            select(User.parent_id, func.coalesce(func.sum(Order.total_amount), 0).label("sales"))
            .join(Order, Order.seller_id == User.id)
            .where(and_(User.parent_id.in_(referrer_ids), qualifying_orders(period)))
            .group_by(User.parent_id)
        )
        sales = {r.parent_id: float(r.sales or 0) for r in sales_rows}
        return [
            {
                "user_id": r.id,
                "nickname": r.nickname,
                "level": r.level,
                "value": float(r.direct_count),
                "referral_sales": round(sales.get(r.id, 0.0), 2),
            }
            for r in referrers
        ]

    # ==================== Per-user views ====================

    async def get_user_rank(self, board_type, user_id: str, period: PeriodLike = None) -> UserRank:
        """Rank of one user; -1 when the user is not on the board."""
        board_type = self._board_type(board_type)
        period = resolve_period(period, self.clock())
        board = await self.get_base_leaderboard(
            board_type, period, self.config.LEADERBOARD_SEARCH_LIMIT
        )
        total = len(board.items)
        for item in board.items:
            if item.user_id == user_id:
                return UserRank(
                    type=board_type,
                    period=period.label,
                    user_id=user_id,
                    rank=item.rank,
                    value=item.value,
                    total_participants=total,
                    percentile=round((total - item.rank + 1) / total * 100, 2),
                )
        return UserRank(
            type=board_type,
            period=period.label,
            user_id=user_id,
            rank=-1,
            total_participants=total,
        )

    async def get_leaderboard_around_user(
        self,
        board_type,
        user_id: str,
        period: PeriodLike = None,
        radius: int = 5,
    ) -> list[LeaderboardItem]:
        """Entries within radius ranks of user_id; empty when the user is unranked."""
        if radius < 0:
            raise ValueError("radius must not be negative")
        board_type = self._board_type(board_type)
        period = resolve_period(period, self.clock())
        board = await self.get_base_leaderboard(
            board_type, period, self.config.LEADERBOARD_SEARCH_LIMIT
        )
        for index, item in enumerate(board.items):
            if item.user_id == user_id:
                return board.items[max(0, index - radius):index + radius + 1]
        return []

    async def get_leaderboard_summary(self, board_type, period: PeriodLike = None) -> LeaderboardSummary:
        board_type = self._board_type(board_type)
        period = resolve_period(period, self.clock())
        board = await self.get_base_leaderboard(
            board_type, period, self.config.LEADERBOARD_SEARCH_LIMIT
        )
        values = [item.value for item in board.items]
        if not values:
            return LeaderboardSummary(type=board_type, period=period.label)

        # Items are sorted descending; the top 10% threshold is the last value inside it
        top_count = max(1, len(values) // 10)
        return LeaderboardSummary(
            type=board_type,
            period=period.label,
            total_participants=len(values),
            top_value=values[0],
            average_value=round(sum(values) / len(values), 2),
            median_value=round(median(values), 2),
            top10_percent_value=values[top_count - 1],
        )
