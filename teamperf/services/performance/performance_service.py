"""
Performance Service

Facade over the performance calculators. Every public method returns a
PerformanceResult so callers can tell "no activity" (status=empty) from
"could not compute" (status=error):

    service = PerformanceService.create(async_session_factory, get_cache())
    result = await service.get_team_performance(user_id, "2024-01")
    if result.status is ResultStatus.ERROR:
        ...

Collaborators are constructor-injected; there is no global instance.
"""
import asyncio
import logging
from typing import Awaitable, Iterable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from teamperf.config import settings, Settings
from teamperf.core.exceptions import PerformanceError
from teamperf.core.period import PeriodLike, resolve_period
from teamperf.core.result import PerformanceResult
from teamperf.schemas.performance import (
    BestPerformance,
    CacheInfo,
    CommissionBreakdown,
    CommissionFactorAnalysis,
    CommissionForecast,
    CommissionSummary,
    Leaderboard,
    LeaderboardItem,
    LeaderboardSummary,
    OrderCommission,
    PerformanceMetrics,
    PersonalPerformance,
    PromotionEligibility,
    PromotionEstimate,
    ReferralNode,
    ReferralPerformance,
    ReferralStats,
    TeamMember,
    TeamMemberStats,
    TeamPerformance,
    UpgradeProgress,
    UserRank,
    ValidationReport,
    WarmupReport,
)
from teamperf.services.cache_service import CacheService
from teamperf.services.performance.base import Clock, utcnow
from teamperf.services.performance.commission_calculator import OrderCommissionCalculator
from teamperf.services.performance.commission_forecast_service import CommissionForecastService
from teamperf.services.performance.personal_calculator import PersonalPerformanceCalculator
from teamperf.services.performance.progression_service import ProgressionService
from teamperf.services.performance.ranking_service import RankingService
from teamperf.services.performance.referral_calculator import ReferralPerformanceCalculator
from teamperf.services.performance.team_calculator import TeamPerformanceCalculator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PerformanceService:
    """Entry point for personal, team, referral, ranking, progression and commission views."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        personal: PersonalPerformanceCalculator,
        team: TeamPerformanceCalculator,
        referral: ReferralPerformanceCalculator,
        ranking: RankingService,
        progression: ProgressionService,
        forecast: CommissionForecastService,
        commission: OrderCommissionCalculator,
        config: Settings = settings,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.personal = personal
        self.team = team
        self.referral = referral
        self.ranking = ranking
        self.progression = progression
        self.forecast = forecast
        self.commission = commission
        self.config = config
        self.clock = clock

    @classmethod
    def create(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        config: Settings = settings,
        clock: Clock = utcnow,
    ) -> "PerformanceService":
        """Wire the default calculators around one session factory and cache."""
        shared = {"config": config, "clock": clock}
        personal = PersonalPerformanceCalculator(session_factory, cache, **shared)
        team = TeamPerformanceCalculator(session_factory, cache, **shared)
        referral = ReferralPerformanceCalculator(session_factory, cache, team, **shared)
        return cls(
            session_factory=session_factory,
            cache=cache,
            personal=personal,
            team=team,
            referral=referral,
            ranking=RankingService(session_factory, cache, **shared),
            progression=ProgressionService(session_factory, cache, team, **shared),
            forecast=CommissionForecastService(
                session_factory, cache, personal, team, referral, **shared
            ),
            commission=OrderCommissionCalculator(session_factory, cache, **shared),
            config=config,
            clock=clock,
        )

    async def _run(self, operation: str, result_type, call: Awaitable[T]) -> PerformanceResult:
        try:
            data = await call
        except (PerformanceError, ValueError) as e:
            logger.warning(f"{operation} failed: {e}")
            return PerformanceResult[result_type].failure(e)
        return PerformanceResult[result_type].success(data)

    # ==================== Performance ====================

    async def get_personal_performance(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "personal performance", PersonalPerformance,
            self.personal.calculate_personal_performance(user_id, period),
        )

    async def get_team_performance(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "team performance", TeamPerformance,
            self.team.calculate_team_performance(user_id, period),
        )

    async def get_referral_performance(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "referral performance", ReferralPerformance,
            self.referral.calculate_referral_performance(user_id, period),
        )

    async def get_monthly_growth_rate(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "monthly growth rate", float,
            self.personal.calculate_monthly_growth_rate(user_id, period),
        )

    async def get_best_performance(self, user_id: str):
        return await self._run(
            "best performance", BestPerformance, self.personal.get_best_performance(user_id)
        )

    async def _metrics(self, user_id: str, period: PeriodLike) -> PerformanceMetrics:
        period = resolve_period(period, self.clock())
        outcomes = await asyncio.gather(
            self.personal.calculate_personal_performance(user_id, period),
            self.team.calculate_team_performance(user_id, period),
            self.referral.calculate_referral_performance(user_id, period),
            return_exceptions=True,
        )
        # Let every calculation settle before reporting the first failure
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        personal, team, referral = outcomes
        return PerformanceMetrics(
            user_id=user_id,
            period=period.label,
            personal=personal,
            team=team,
            referral=referral,
        )

    async def get_performance_metrics(self, user_id: str, period: PeriodLike = None):
        """Personal, team and referral performance computed together."""
        return await self._run("performance metrics", PerformanceMetrics, self._metrics(user_id, period))

    # ==================== Team & referrals ====================

    async def get_team_members(self, user_id: str):
        return await self._run(
            "team members", list[TeamMember], self.team.get_all_team_members(user_id)
        )

    async def get_team_member_stats(self, user_id: str):
        return await self._run(
            "team member stats", TeamMemberStats, self.team.get_team_member_stats(user_id)
        )

    async def calculate_team_active_rate(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "team active rate", float, self.team.calculate_team_active_rate(user_id, period)
        )

    async def get_referral_tree(self, user_id: str, max_depth: int = 3):
        return await self._run(
            "referral tree", ReferralNode, self.referral.get_referral_tree(user_id, max_depth)
        )

    async def get_referral_stats(self, user_id: str):
        return await self._run(
            "referral stats", ReferralStats, self.referral.get_referral_stats(user_id)
        )

    # ==================== Rankings ====================

    async def get_leaderboard(self, board_type, period: PeriodLike = None, limit: Optional[int] = None):
        return await self._run(
            "leaderboard", Leaderboard,
            self.ranking.get_performance_leaderboard(board_type, period, limit),
        )

    async def get_user_rank(self, board_type, user_id: str, period: PeriodLike = None):
        return await self._run(
            "user rank", UserRank, self.ranking.get_user_rank(board_type, user_id, period)
        )

    async def get_leaderboard_around_user(
        self, board_type, user_id: str, period: PeriodLike = None, radius: int = 5
    ):
        return await self._run(
            "leaderboard around user", list[LeaderboardItem],
            self.ranking.get_leaderboard_around_user(board_type, user_id, period, radius),
        )

    async def get_leaderboard_summary(self, board_type, period: PeriodLike = None):
        return await self._run(
            "leaderboard summary", LeaderboardSummary,
            self.ranking.get_leaderboard_summary(board_type, period),
        )

    # ==================== Progression ====================

    async def get_upgrade_progress(
        self, user_id: str, target_level: Optional[str] = None, period: PeriodLike = None
    ):
        return await self._run(
            "upgrade progress", UpgradeProgress,
            self.progression.get_upgrade_progress(user_id, target_level, period),
        )

    async def get_all_level_progress(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "all level progress", list[UpgradeProgress],
            self.progression.get_all_level_progress(user_id, period),
        )

    async def check_promotion_eligibility(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "promotion eligibility", PromotionEligibility,
            self.progression.check_promotion_eligibility(user_id, period),
        )

    async def predict_promotion_time(self, user_id: str):
        return await self._run(
            "promotion time", PromotionEstimate, self.progression.predict_promotion_time(user_id)
        )

    # ==================== Commission ====================

    async def predict_commission(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "commission forecast", CommissionForecast,
            self.forecast.predict_commission(user_id, period),
        )

    async def get_commission_trend(self, user_id: str, months: int = 6, period: PeriodLike = None):
        return await self._run(
            "commission trend", list[CommissionBreakdown],
            self.forecast.get_commission_trend(user_id, months, period),
        )

    async def get_commission_summary(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "commission summary", CommissionSummary,
            self.forecast.get_commission_summary(user_id, period),
        )

    async def analyze_commission_factors(self, user_id: str, period: PeriodLike = None):
        return await self._run(
            "commission factors", CommissionFactorAnalysis,
            self.forecast.analyze_commission_factors(user_id, period),
        )

    async def calculate_order_commission(self, order_id: str):
        return await self._run(
            "order commission", OrderCommission,
            self.commission.calculate_order_commission(order_id),
        )

    # ==================== Validation & maintenance ====================

    async def validate_performance_data(self, user_id: str, period: PeriodLike = None) -> ValidationReport:
        """
        Recompute a user's metrics and sanity-check them.

        Missing users and unparseable periods are reported as errors rather
        than raised.
        """
        label = str(period) if period is not None else ""
        errors: list[str] = []
        warnings: list[str] = []

        try:
            resolved = resolve_period(period, self.clock())
            label = resolved.label
        except ValueError as e:
            return ValidationReport(user_id=user_id, period=label, valid=False, errors=[str(e)])

        try:
            await self.team.get_team_path(user_id)
            metrics = await self._metrics(user_id, resolved)
        except (PerformanceError, ValueError) as e:
            return ValidationReport(user_id=user_id, period=label, valid=False, errors=[str(e)])

        personal, team, referral = metrics.personal, metrics.team, metrics.referral
        if personal.sales_amount < 0 or team.team_sales < 0 or referral.referral_revenue < 0:
            errors.append("Sales amounts must not be negative")
        if personal.order_count < 0 or team.team_orders < 0:
            errors.append("Order counts must not be negative")
        if not 0 <= personal.repeat_rate <= 1:
            errors.append(f"Repeat rate {personal.repeat_rate} outside [0, 1]")
        if not 0 <= team.active_rate <= 1:
            errors.append(f"Active rate {team.active_rate} outside [0, 1]")
        if team.includes_self and team.team_sales < personal.sales_amount:
            warnings.append(
                f"Team sales {team.team_sales} below personal sales {personal.sales_amount}"
            )
        if referral.untiered_indirect_sales > 0:
            warnings.append(
                f"{referral.untiered_indirect_sales} indirect sales are deeper than the commission tiers"
            )

        return ValidationReport(
            user_id=user_id,
            period=label,
            valid=not errors,
            errors=errors,
            warnings=warnings,
        )

    async def clear_user_cache(self, user_id: str) -> int:
        """Drop every cached entry of one user."""
        count = await self.cache.invalidate_tags([f"user:{user_id}"])
        logger.info(f"Cleared {count} cache entries for user {user_id}")
        return count

    async def clear_all_cache(self) -> int:
        count = await self.cache.clear_all()
        logger.info(f"Cleared {count} performance cache entries")
        return count

    async def get_cache_info(self) -> CacheInfo:
        return CacheInfo(**await self.cache.stats())

    async def rebuild_performance_metrics(self, user_id: str, period: PeriodLike = None):
        """Invalidate a user's cached metrics and recompute them."""
        await self.clear_user_cache(user_id)
        return await self.get_performance_metrics(user_id, period)

    async def warmup_cache(self, user_ids: Iterable[str], period: PeriodLike = None) -> WarmupReport:
        """Precompute metrics for many users with bounded concurrency."""
        resolved = resolve_period(period, self.clock())
        user_ids = list(dict.fromkeys(user_ids))
        semaphore = asyncio.Semaphore(self.config.PERFORMANCE_MAX_CONCURRENCY)

        async def warm(user_id: str) -> bool:
            async with semaphore:
                try:
                    await self._metrics(user_id, resolved)
                    return True
                except (PerformanceError, ValueError) as e:
                    logger.warning(f"Cache warmup failed for {user_id}: {e}")
                    return False

        outcomes = await asyncio.gather(*[warm(user_id) for user_id in user_ids])
        failed = [user_id for user_id, ok in zip(user_ids, outcomes) if not ok]
        logger.info(
            f"Warmed performance cache for {len(user_ids) - len(failed)}/{len(user_ids)} users in {resolved}"
        )
        return WarmupReport(
            period=resolved.label,
            requested=len(user_ids),
            succeeded=len(user_ids) - len(failed),
            failed=len(failed),
            failed_user_ids=failed,
        )
