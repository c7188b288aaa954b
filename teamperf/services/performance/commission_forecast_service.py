"""
Commission forecasting.

A month's commission is derived from the rate tables applied to that month's
personal, team and referral performance. The forecast extrapolates the
recent monthly totals with a least-squares line and blends the result with
the current month's commission.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy import select

from teamperf.core.exceptions import UserNotFoundError
from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.models.user import User, UserLevel
from teamperf.schemas.performance import (
    CommissionBreakdown,
    CommissionFactor,
    CommissionFactorAnalysis,
    CommissionForecast,
    CommissionSummary,
)
from teamperf.services.performance.base import PerformanceCalculatorBase
from teamperf.services.performance.personal_calculator import PersonalPerformanceCalculator
from teamperf.services.performance.rates import (
    DIRECT_REFERRAL_RATES,
    LEVEL_BONUS_AMOUNTS,
    PERSONAL_SALES_RATES,
    TEAM_BONUS_RATES,
    indirect_rate,
)
from teamperf.services.performance.referral_calculator import ReferralPerformanceCalculator
from teamperf.services.performance.team_calculator import TeamPerformanceCalculator
from teamperf.services.performance.trend import project_next, trend_direction

logger = logging.getLogger(__name__)

# Factor analysis: weight of personal sales, and the thresholds below which
# team activity and referral conversion are flagged with their weights
PERSONAL_SALES_FACTOR_WEIGHT = 0.1
PERSONAL_SALES_TARGET = 10_000
TEAM_ACTIVE_RATE_TARGET = 0.5
TEAM_ACTIVE_RATE_WEIGHT = 1000
REFERRAL_CONVERSION_TARGET = 0.3
REFERRAL_CONVERSION_WEIGHT = 500


class CommissionForecastService(PerformanceCalculatorBase):
    """Monthly commission breakdowns, trends and next-month projection."""

    def __init__(
        self,
        session_factory,
        cache,
        personal_calculator: PersonalPerformanceCalculator,
        team_calculator: TeamPerformanceCalculator,
        referral_calculator: ReferralPerformanceCalculator,
        **kwargs
    ):
        super().__init__(session_factory, cache, **kwargs)
        self.personal = personal_calculator
        self.team = team_calculator
        self.referral = referral_calculator

    async def _get_level(self, user_id: str) -> UserLevel:
        level = await self._scalar("user level", select(User.level).where(User.id == user_id))
        if level is None:
            raise UserNotFoundError(user_id)
        return UserLevel(level)

    def _as_month(self, period: PeriodLike) -> Period:
        """Month view of any period: the month holding its last day."""
        return resolve_period(period, self.clock()).last_month()

    # ==================== Breakdown ====================

    async def calculate_period_commission(
        self,
        user_id: str,
        level: UserLevel,
        period: Period
    ) -> CommissionBreakdown:
        """Commission earned in period at the given level's rates."""
        personal, team, referral = await asyncio.gather(
            self.personal.calculate_personal_performance(user_id, period),
            self.team.calculate_team_performance(user_id, period),
            self.referral.calculate_referral_performance(user_id, period),
        )

        own_sales_in_team = personal.sales_amount if team.includes_self else 0.0
        downline_sales = max(team.team_sales - own_sales_in_team, 0.0)

        indirect = 0.0
        for depth, sales in referral.indirect_sales_by_depth.items():
            rate = indirect_rate(depth)
            if rate is not None:
                indirect += sales * rate

        active = personal.sales_amount > 0 or team.team_sales > 0
        breakdown = {
            "personal": personal.sales_amount * PERSONAL_SALES_RATES[level],
            "team_bonus": downline_sales * TEAM_BONUS_RATES[level],
            "direct_referral": referral.direct_sales * DIRECT_REFERRAL_RATES[level],
            "indirect_referral": indirect,
            "level_bonus": LEVEL_BONUS_AMOUNTS[level] if active else 0.0,
        }
        return CommissionBreakdown(
            period=period.label,
            total=round(sum(breakdown.values()), 2),
            **{k: round(v, 2) for k, v in breakdown.items()},
        )

    async def get_commission_trend(
        self,
        user_id: str,
        months: int = 6,
        period: PeriodLike = None
    ) -> list[CommissionBreakdown]:
        """Monthly breakdowns for the `months` months ending with period, oldest first."""
        if months < 1:
            raise ValueError("months must be at least 1")
        end = self._as_month(period)
        level = await self._get_level(user_id)
        # One month at a time keeps the number of open sessions bounded
        trend = []
        for offset in range(-(months - 1), 1):
            trend.append(await self.calculate_period_commission(user_id, level, end.shift_months(offset)))
        return trend

    # ==================== Forecast ====================

    async def predict_commission(self, user_id: str, period: PeriodLike = None) -> CommissionForecast:
        period = self._as_month(period)
        return await self.cache.remember(
            f"forecast:{user_id}:{period.label}",
            lambda: self._forecast(user_id, period),
            ttl=self.config.COMMISSION_CACHE_TTL,
            tags=[f"user:{user_id}", f"period:{period.label}"],
            model=CommissionForecast,
        )

    async def _forecast(self, user_id: str, period: Period) -> CommissionForecast:
        level = await self._get_level(user_id)
        history = await self.get_commission_trend(user_id, self.config.FORECAST_TREND_MONTHS, period)
        current = history[-1]
        totals = [b.total for b in history]

        if len(totals) >= 2:
            projection = project_next(totals)
            weight = self.config.FORECAST_TREND_WEIGHT
            projected = weight * projection + (1 - weight) * current.total
            previous = totals[-2]
            growth_rate = (current.total - previous) / previous if previous > 0 else 0.0
        else:
            projection = current.total
            projected = current.total
            growth_rate = 0.0

        logger.debug(f"Commission forecast for {user_id} after {period}: {projected:.2f}")

        return CommissionForecast(
            user_id=user_id,
            level=level.value,
            period=period.label,
            next_period=period.shift_months(1).label,
            current=current,
            history=history,
            trend_projection=round(projection, 2),
            projected_commission=round(projected, 2),
            growth_rate=round(growth_rate, 4),
            trend=trend_direction(totals),
            # Fixed confidence until a backtested model exists
            confidence=self.config.FORECAST_CONFIDENCE,
        )

    async def get_commission_summary(self, user_id: str, period: Optional[PeriodLike] = None) -> CommissionSummary:
        """Current and previous month, year to date and monthly average."""
        month = self._as_month(period)
        months_elapsed = month.start.month
        year = await self.get_commission_trend(user_id, months_elapsed, month)

        current = year[-1].total
        if len(year) >= 2:
            previous = year[-2].total
        else:
            level = await self._get_level(user_id)
            previous = (await self.calculate_period_commission(user_id, level, month.previous())).total
        year_to_date = sum(b.total for b in year)

        return CommissionSummary(
            user_id=user_id,
            current_month=current,
            previous_month=previous,
            year_to_date=round(year_to_date, 2),
            average_monthly=round(year_to_date / months_elapsed, 2),
            growth_rate=round((current - previous) / previous, 4) if previous > 0 else 0.0,
        )

    # ==================== Factors ====================

    async def analyze_commission_factors(
        self,
        user_id: str,
        period: PeriodLike = None
    ) -> CommissionFactorAnalysis:
        """
        Factors holding back commission in the month.

        Personal sales always count toward the potential. Team activity and
        referral conversion are listed only while below their targets, with
        an impact proportional to the shortfall.
        """
        month = self._as_month(period)
        await self._get_level(user_id)
        personal, team, referral = await asyncio.gather(
            self.personal.calculate_personal_performance(user_id, month),
            self.team.calculate_team_performance(user_id, month),
            self.referral.calculate_referral_performance(user_id, month),
        )

        factors = []
        if personal.sales_amount > 0:
            factors.append(CommissionFactor(
                name="personal_sales",
                impact=round(personal.sales_amount * PERSONAL_SALES_FACTOR_WEIGHT, 2),
                description=f"Personal sales of {personal.sales_amount:,.2f} in {month}",
                suggestion=(
                    "Promote products and follow up with existing customers"
                    if personal.sales_amount < PERSONAL_SALES_TARGET
                    else "Keep the current sales pace"
                ),
            ))
        if team.active_rate < TEAM_ACTIVE_RATE_TARGET:
            factors.append(CommissionFactor(
                name="team_active_rate",
                impact=round((TEAM_ACTIVE_RATE_TARGET - team.active_rate) * TEAM_ACTIVE_RATE_WEIGHT, 2),
                description=f"Only {team.active_rate:.0%} of the team sold in {month}",
                suggestion="Train and motivate team members to start selling",
            ))
        if referral.conversion_rate < REFERRAL_CONVERSION_TARGET:
            factors.append(CommissionFactor(
                name="referral_conversion",
                impact=round(
                    (REFERRAL_CONVERSION_TARGET - referral.conversion_rate) * REFERRAL_CONVERSION_WEIGHT, 2
                ),
                description=f"Only {referral.conversion_rate:.0%} of direct referrals are active",
                suggestion="Improve onboarding for newly referred members",
            ))

        return CommissionFactorAnalysis(
            user_id=user_id,
            period=month.label,
            factors=factors,
            optimization_potential=round(sum(f.impact for f in factors), 2),
        )
