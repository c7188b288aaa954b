"""
Personal performance: one seller's sales, orders and customers over a period.
"""
import asyncio
import logging
from datetime import datetime

from sqlalchemy import select, func, and_

from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.models.order import Order
from teamperf.schemas.performance import BestPerformance, PersonalPerformance
from teamperf.services.performance.base import PerformanceCalculatorBase, qualifying_orders

logger = logging.getLogger(__name__)


class PersonalPerformanceCalculator(PerformanceCalculatorBase):
    """Aggregates a user's own qualifying sales."""

    def cache_key(self, user_id: str, period: Period) -> str:
        return f"personal:{user_id}:{period.label}"

    async def calculate_personal_performance(
        self,
        user_id: str,
        period: PeriodLike = None
    ) -> PersonalPerformance:
        period = resolve_period(period, self.clock())
        return await self.cache.remember(
            self.cache_key(user_id, period),
            lambda: self._compute(user_id, period),
            ttl=self.config.PERSONAL_PERFORMANCE_CACHE_TTL,
            tags=[f"user:{user_id}", f"period:{period.label}"],
            model=PersonalPerformance,
        )

    async def _compute(self, user_id: str, period: Period) -> PersonalPerformance:
        now = self.clock()
        month_start = Period.month_of(now).start
        year_start = Period.year(month_start.year).start

        totals, customer_count, repeat_customers, month_to_date, year_to_date = await asyncio.gather(
            self._sales_totals(user_id, period),
            self._customer_count(user_id, period),
            self._repeat_customer_count(user_id, period),
            self.sales_between(user_id, month_start, now),
            self.sales_between(user_id, year_start, now),
        )
        sales_amount, order_count = totals

        repeat_rate = repeat_customers / customer_count if customer_count > 0 else 0.0
        average_order_value = sales_amount / order_count if order_count > 0 else 0.0

        logger.debug(
            f"Personal performance for {user_id} in {period}: "
            f"{order_count} orders, {sales_amount:.2f} sales"
        )

        return PersonalPerformance(
            user_id=user_id,
            period=period.label,
            sales_amount=round(sales_amount, 2),
            order_count=order_count,
            customer_count=customer_count,
            new_customers=customer_count - repeat_customers,
            repeat_customers=repeat_customers,
            repeat_rate=round(repeat_rate, 4),
            average_order_value=round(average_order_value, 2),
            month_to_date=round(month_to_date, 2),
            year_to_date=round(year_to_date, 2),
            calculated_at=now,
        )

    async def calculate_monthly_growth_rate(self, user_id: str, period: PeriodLike = None) -> float:
        """Sales growth of the month over the month before; 0 without prior sales."""
        month = resolve_period(period, self.clock()).last_month()
        current, previous = await asyncio.gather(
            self.sales_between(user_id, month.start, month.end),
            self.sales_between(user_id, month.previous().start, month.previous().end),
        )
        if previous <= 0:
            return 0.0
        return round((current - previous) / previous, 4)

    async def get_best_performance(self, user_id: str) -> BestPerformance:
        """The month with the highest qualifying sales; earliest month wins ties."""
        rows = await self._all(
            "personal sales history",
            select(Order.created_at, Order.total_amount).where(
                and_(Order.seller_id == user_id, qualifying_orders())
            )
        )
        monthly: dict[str, float] = {}
        for created_at, amount in rows:
            label = Period.month_of(created_at).label
            monthly[label] = monthly.get(label, 0.0) + float(amount or 0)

        if not monthly:
            return BestPerformance(user_id=user_id)
        best = max(sorted(monthly), key=lambda label: monthly[label])
        return BestPerformance(user_id=user_id, period=best, sales_amount=round(monthly[best], 2))

    # ==================== Fetches ====================

    async def _sales_totals(self, user_id: str, period: Period) -> tuple[float, int]:
        row = await self._one(
            "personal sales totals",
            select(
                func.coalesce(func.sum(Order.total_amount), 0).label("sales"),
                func.count(Order.id).label("orders"),
            ).where(
                and_(Order.seller_id == user_id, qualifying_orders(period))
            )
        )
        return float(row.sales or 0), int(row.orders or 0)

    async def _customer_count(self, user_id: str, period: Period) -> int:
        count = await self._scalar(
            "personal customer count",
            select(func.count(func.distinct(Order.buyer_id))).where(
                and_(Order.seller_id == user_id, qualifying_orders(period))
            )
        )
        return int(count or 0)

    async def _repeat_customer_count(self, user_id: str, period: Period) -> int:
        repeat_buyers = (
            select(Order.buyer_id)
            .where(and_(Order.seller_id == user_id, qualifying_orders(period)))
            .group_by(Order.buyer_id)
            .having(func.count(Order.id) > 1)
            .subquery()
        )
        count = await self._scalar(
            "personal repeat customers",
            select(func.count()).select_from(repeat_buyers)
        )
        return int(count or 0)

    async def sales_between(self, user_id: str, start: datetime, end: datetime) -> float:
        """Qualifying sales in [start, end)."""
        total = await self._scalar(
            "personal sales window",
            select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                and_(Order.seller_id == user_id, qualifying_orders(start=start, end=end))
            )
        )
        return float(total or 0)
