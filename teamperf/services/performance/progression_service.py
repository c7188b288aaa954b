"""
Level-upgrade progression.

Compares a user's period metrics against LEVEL_REQUIREMENTS. Read-only:
actual level changes are applied elsewhere.
"""
import asyncio
import logging
import math
from typing import Optional

from sqlalchemy import select, and_

from teamperf.core.exceptions import UserNotFoundError
from teamperf.core.period import Period, PeriodLike, resolve_period
from teamperf.models.user import User, UserLevel
from teamperf.schemas.performance import (
    PromotionEligibility,
    PromotionEstimate,
    RequirementProgress,
    UpgradeProgress,
)
from teamperf.services.performance.base import PerformanceCalculatorBase
from teamperf.services.performance.rates import LEVEL_REQUIREMENTS, LevelRequirement
from teamperf.services.performance.team_calculator import TeamPerformanceCalculator

logger = logging.getLogger(__name__)


def requirement_progress(name: str, current: float, required: float) -> RequirementProgress:
    """Percentage complete for one requirement; only a met requirement reaches 100."""
    met = current >= required
    if met:
        percentage = 100.0
    else:
        percentage = min(round(max(current, 0) / required * 100, 2), 99.99)
    return RequirementProgress(
        name=name,
        current=current,
        required=required,
        met=met,
        percentage=percentage,
    )


class ProgressionService(PerformanceCalculatorBase):
    """Upgrade progress, eligibility and promotion-time estimates."""

    def __init__(self, session_factory, cache, team_calculator: TeamPerformanceCalculator, **kwargs):
        super().__init__(session_factory, cache, **kwargs)
        self.team = team_calculator

    async def _get_level(self, user_id: str) -> UserLevel:
        level = await self._scalar("user level", select(User.level).where(User.id == user_id))
        if level is None:
            raise UserNotFoundError(user_id)
        return UserLevel(level)

    async def _metrics(self, user_id: str, period: Period, sub_level: Optional[UserLevel]) -> dict:
        performance, direct_referrals, sub_level_directs = await asyncio.gather(
            self.team.calculate_team_performance(user_id, period),
            self._count_users("direct referrals", User.parent_id == user_id),
            self._count_sub_level_directs(user_id, sub_level),
        )
        return {
            "team_sales": performance.team_sales,
            "team_size": performance.member_count,
            "direct_referrals": direct_referrals,
            "sub_level_directs": sub_level_directs,
        }

    async def _count_sub_level_directs(self, user_id: str, sub_level: Optional[UserLevel]) -> int:
        if sub_level is None:
            return 0
        levels = [level.value for level in UserLevel.at_least(sub_level)]
        return await self._count_users(
            "sub-level direct referrals",
            and_(User.parent_id == user_id, User.level.in_(levels)),
        )

    @staticmethod
    def _evaluate(requirement: LevelRequirement, metrics: dict) -> list[RequirementProgress]:
        checks = [
            ("team_sales", metrics["team_sales"], requirement.min_team_sales),
            ("direct_referrals", metrics["direct_referrals"], requirement.min_direct_referrals),
            ("team_size", metrics["team_size"], requirement.min_team_size),
        ]
        if requirement.sub_level is not None:
            checks.append((
                f"direct_{requirement.sub_level.value.lower()}_referrals",
                metrics["sub_level_directs"],
                requirement.min_sub_level_directs,
            ))
        # Zero thresholds are not requirements
        return [
            requirement_progress(name, float(current), float(required))
            for name, current, required in checks
            if required > 0
        ]

    # ==================== Progress ====================

    async def get_upgrade_progress(
        self,
        user_id: str,
        target_level: Optional[str] = None,
        period: PeriodLike = None,
    ) -> UpgradeProgress:
        period = resolve_period(period, self.clock())
        current_level = await self._get_level(user_id)
        target = UserLevel(target_level) if target_level else current_level.next_level()

        if target is None:
            return UpgradeProgress(
                user_id=user_id,
                current_level=current_level.value,
                period=period.label,
                progress_percentage=100.0,
                eligible=True,
            )
        requirement = LEVEL_REQUIREMENTS.get(target)
        if requirement is None:
            raise ValueError(f"No upgrade requirements defined for level {target.value}")

        metrics = await self._metrics(user_id, period, requirement.sub_level)
        requirements = self._evaluate(requirement, metrics)
        if requirements:
            progress = sum(r.percentage for r in requirements) / len(requirements)
        else:
            progress = 100.0
        eligible = all(r.met for r in requirements)

        return UpgradeProgress(
            user_id=user_id,
            current_level=current_level.value,
            target_level=target.value,
            period=period.label,
            requirements=requirements,
            progress_percentage=100.0 if eligible else min(round(progress, 2), 99.99),
            eligible=eligible,
        )

    async def get_all_level_progress(self, user_id: str, period: PeriodLike = None) -> list[UpgradeProgress]:
        """Progress toward every level above the user's current one."""
        current_level = await self._get_level(user_id)
        targets = [
            level for level in UserLevel.at_least(UserLevel.STAR_1)
            if level.rank > current_level.rank
        ]
        return list(await asyncio.gather(*[
            self.get_upgrade_progress(user_id, target.value, period) for target in targets
        ]))

    async def check_promotion_eligibility(self, user_id: str, period: PeriodLike = None) -> PromotionEligibility:
        progress = await self.get_upgrade_progress(user_id, period=period)
        return PromotionEligibility(
            user_id=user_id,
            current_level=progress.current_level,
            next_level=progress.target_level,
            eligible=progress.eligible,
            missing_requirements=[r.name for r in progress.requirements if not r.met],
        )

    async def predict_promotion_time(self, user_id: str) -> PromotionEstimate:
        """
        Months until team sales reach the next level's threshold at the
        current month-over-month growth rate.
        """
        current_level = await self._get_level(user_id)
        target = current_level.next_level()
        if target is None:
            return PromotionEstimate(user_id=user_id, months_to_promotion=0)

        month = Period.current_month(self.clock())
        current, previous = await asyncio.gather(
            self.team.calculate_team_performance(user_id, month),
            self.team.calculate_team_performance(user_id, month.previous()),
        )
        required = LEVEL_REQUIREMENTS[target].min_team_sales
        growth = (
            (current.team_sales - previous.team_sales) / previous.team_sales
            if previous.team_sales > 0 else 0.0
        )

        months: Optional[int] = None
        if current.team_sales >= required:
            months = 0
        elif growth > 0 and current.team_sales > 0:
            months = math.ceil(math.log(required / current.team_sales) / math.log(1 + growth))

        return PromotionEstimate(
            user_id=user_id,
            target_level=target.value,
            monthly_growth_rate=round(growth, 4),
            months_to_promotion=months,
            estimated_date=month.shift_months(months).start.date() if months is not None else None,
        )
