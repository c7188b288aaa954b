"""
Team Performance Services

Personal, team and referral aggregation, leaderboards, level progression
and commission:
- PersonalPerformanceCalculator: a seller's own sales and customers
- TeamPerformanceCalculator: materialized-path team aggregates
- ReferralPerformanceCalculator: direct vs indirect referral revenue
- RankingService: leaderboards with rank changes
- ProgressionService: level-upgrade progress
- CommissionForecastService: monthly commission trend and projection
- OrderCommissionCalculator: layered commission for one order
- PerformanceService: facade returning typed results
"""

from teamperf.services.performance.personal_calculator import PersonalPerformanceCalculator
from teamperf.services.performance.team_calculator import TeamPerformanceCalculator
from teamperf.services.performance.referral_calculator import ReferralPerformanceCalculator
from teamperf.services.performance.ranking_service import RankingService
from teamperf.services.performance.progression_service import ProgressionService
from teamperf.services.performance.commission_forecast_service import CommissionForecastService
from teamperf.services.performance.commission_calculator import OrderCommissionCalculator
from teamperf.services.performance.performance_service import PerformanceService

__all__ = [
    "PersonalPerformanceCalculator",
    "TeamPerformanceCalculator",
    "ReferralPerformanceCalculator",
    "RankingService",
    "ProgressionService",
    "CommissionForecastService",
    "OrderCommissionCalculator",
    "PerformanceService",
]
