"""
Layered commission for a single order.

The seller earns the personal rate of their level. Walking up the seller's
team path, the direct referrer earns the direct-referral rate of their own
level and each further ancestor earns the indirect rate for its depth.
Ancestors past the last indirect tier earn nothing.
"""
import logging

from sqlalchemy import select

from teamperf.core.exceptions import OrderNotFoundError, UserNotFoundError
from teamperf.core.team_path import TeamPath
from teamperf.models.order import Order, QUALIFYING_STATUSES
from teamperf.models.user import User, UserLevel, UserStatus
from teamperf.schemas.performance import CommissionLine, OrderCommission
from teamperf.services.performance.base import PerformanceCalculatorBase
from teamperf.services.performance.rates import (
    CommissionType,
    DIRECT_REFERRAL_RATES,
    PERSONAL_SALES_RATES,
    indirect_rate,
)

logger = logging.getLogger(__name__)


class OrderCommissionCalculator(PerformanceCalculatorBase):
    """Splits one order's commission across the seller and their upline."""

    async def calculate_order_commission(self, order_id: str) -> OrderCommission:
        order = await self._first("order", select(Order).where(Order.id == order_id))
        if order is None:
            raise OrderNotFoundError(order_id)

        seller = await self._first("order seller", select(User).where(User.id == order.seller_id))
        if seller is None:
            raise UserNotFoundError(order.seller_id)

        amount = float(order.total_amount or 0)
        result = OrderCommission(
            order_id=order.id,
            seller_id=seller.id,
            order_amount=amount,
            status=order.status,
        )
        if order.status not in QUALIFYING_STATUSES:
            return result

        lines = []
        personal_rate = PERSONAL_SALES_RATES[UserLevel(seller.level)]
        if personal_rate > 0:
            lines.append(self._line(seller.id, CommissionType.PERSONAL, 0, personal_rate, amount))

        ancestors = TeamPath.parse(seller.team_path).ancestors()
        upline = {}
        if ancestors:
            rows = await self._all(
                "order upline",
                select(User.id, User.level, User.status).where(User.id.in_(ancestors))
            )
            upline = {row.id: row for row in rows}

        untiered = []
        for depth, ancestor_id in enumerate(ancestors, start=1):
            ancestor = upline.get(ancestor_id)
            # Path segments without a user row (e.g. a synthetic root) earn nothing
            if ancestor is None or ancestor.status != UserStatus.ACTIVE.value:
                continue
            if depth == 1:
                rate = DIRECT_REFERRAL_RATES[UserLevel(ancestor.level)]
                commission_type = CommissionType.DIRECT_REFERRAL
            else:
                rate = indirect_rate(depth)
                commission_type = CommissionType.INDIRECT_REFERRAL
                if rate is None:
                    untiered.append(ancestor_id)
                    continue
            if rate > 0:
                lines.append(self._line(ancestor_id, commission_type, depth, rate, amount))

        if untiered:
            logger.warning(
                f"Order {order.id}: {len(untiered)} ancestors beyond the last indirect tier earn no commission"
            )

        return result.model_copy(update={
            "lines": lines,
            "total_commission": round(sum(line.amount for line in lines), 2),
            "untiered_ancestors": untiered,
        })

    @staticmethod
    def _line(user_id: str, commission_type: str, depth: int, rate: float, amount: float) -> CommissionLine:
        return CommissionLine(
            user_id=user_id,
            commission_type=commission_type,
            depth=depth,
            rate=rate,
            amount=round(amount * rate, 2),
        )
