"""
Performance Schemas

Derived, non-persisted views produced by the performance subsystem.
Amounts are floats rounded to 2 places; rates are fractions in [0, 1]
unless the field name says percentage.
"""
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from teamperf.schemas.base import BaseResponseSchema


# ==================== Personal ====================

class PersonalPerformance(BaseResponseSchema):
    user_id: str
    period: str
    sales_amount: float = 0.0
    order_count: int = 0
    customer_count: int = Field(0, description="Distinct buyers in period")
    new_customers: int = Field(0, description="Buyers with exactly one order in period")
    repeat_customers: int = 0
    repeat_rate: float = Field(0.0, ge=0, le=1)
    average_order_value: float = 0.0
    month_to_date: float = 0.0
    year_to_date: float = 0.0
    calculated_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.order_count == 0 and self.month_to_date == 0 and self.year_to_date == 0


class BestPerformance(BaseResponseSchema):
    user_id: str
    period: Optional[str] = Field(None, description="Month with the highest qualifying sales")
    sales_amount: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.period is None


# ==================== Team ====================

class TeamMember(BaseResponseSchema):
    user_id: str
    nickname: Optional[str] = None
    level: str
    status: str
    parent_id: Optional[str] = None
    depth: int = Field(..., description="Generations below the team owner (1 = direct)")


class LevelBucket(BaseResponseSchema):
    level: str
    member_count: int
    sales: float


class TeamPerformance(BaseResponseSchema):
    user_id: str
    period: str
    member_count: int = 0
    team_sales: float = 0.0
    team_orders: int = 0
    new_members: int = 0
    active_members: int = 0
    active_rate: float = Field(0.0, ge=0, le=1)
    productivity: float = 0.0
    includes_self: bool = True
    level_distribution: List[LevelBucket] = []
    calculated_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.member_count == 0 and self.team_orders == 0


class TeamMemberStats(BaseResponseSchema):
    user_id: str
    total_members: int
    active_members: int
    new_members_this_month: int
    direct_members: int

    @property
    def is_empty(self) -> bool:
        return self.total_members == 0


# ==================== Referral ====================

class ReferralPerformance(BaseResponseSchema):
    user_id: str
    period: str
    direct_referrals: int = 0
    indirect_referrals: int = 0
    direct_sales: float = 0.0
    indirect_sales: float = 0.0
    referral_revenue: float = 0.0
    active_referrals: int = 0
    conversion_rate: float = Field(0.0, ge=0, le=1)
    new_direct_referrals: int = 0
    network_growth: float = 0.0
    indirect_sales_by_depth: Dict[int, float] = {}
    untiered_indirect_sales: float = Field(
        0.0, description="Indirect sales deeper than the tabulated commission tiers"
    )
    calculated_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.direct_referrals == 0 and self.indirect_referrals == 0


class ReferralNode(BaseResponseSchema):
    user_id: str
    nickname: Optional[str] = None
    level: str
    depth: int
    children: List["ReferralNode"] = []

    @property
    def is_empty(self) -> bool:
        return not self.children


class ReferralStats(BaseResponseSchema):
    user_id: str
    total_direct: int
    total_indirect: int
    active_direct: int
    new_direct_this_month: int

    @property
    def is_empty(self) -> bool:
        return self.total_direct == 0 and self.total_indirect == 0


class PerformanceMetrics(BaseResponseSchema):
    user_id: str
    period: str
    personal: PersonalPerformance
    team: TeamPerformance
    referral: ReferralPerformance

    @property
    def is_empty(self) -> bool:
        return self.personal.is_empty and self.team.is_empty and self.referral.is_empty


# ==================== Leaderboards ====================

class LeaderboardType(str, Enum):
    PERSONAL = "personal"
    TEAM = "team"
    REFERRAL = "referral"


class LeaderboardItem(BaseResponseSchema):
    user_id: str
    nickname: Optional[str] = None
    level: str
    value: float
    rank: int
    previous_rank: Optional[int] = None
    rank_change: Optional[int] = Field(
        None, description="previous_rank - rank; None for new entrants"
    )
    is_new_entrant: bool = False
    referral_sales: Optional[float] = None


class Leaderboard(BaseResponseSchema):
    type: LeaderboardType
    period: str
    limit: int
    items: List[LeaderboardItem] = []
    generated_at: datetime

    @property
    def is_empty(self) -> bool:
        return not self.items


class UserRank(BaseResponseSchema):
    type: LeaderboardType
    period: str
    user_id: str
    rank: int = Field(..., description="-1 when the user is not ranked")
    value: float = 0.0
    total_participants: int = 0
    percentile: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.rank < 0


class LeaderboardSummary(BaseResponseSchema):
    type: LeaderboardType
    period: str
    total_participants: int = 0
    top_value: float = 0.0
    average_value: float = 0.0
    median_value: float = 0.0
    top10_percent_value: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.total_participants == 0


# ==================== Progression ====================

class RequirementProgress(BaseResponseSchema):
    name: str
    current: float
    required: float
    met: bool
    percentage: float = Field(..., ge=0, le=100)


class UpgradeProgress(BaseResponseSchema):
    user_id: str
    current_level: str
    target_level: Optional[str] = None
    period: str
    requirements: List[RequirementProgress] = []
    progress_percentage: float = Field(0.0, ge=0, le=100)
    eligible: bool = False


class PromotionEligibility(BaseResponseSchema):
    user_id: str
    current_level: str
    next_level: Optional[str] = None
    eligible: bool
    missing_requirements: List[str] = []


class PromotionEstimate(BaseResponseSchema):
    user_id: str
    target_level: Optional[str] = None
    monthly_growth_rate: float = 0.0
    months_to_promotion: Optional[int] = Field(
        None, description="None when growth is not positive"
    )
    estimated_date: Optional[date] = None


# ==================== Commission ====================

class CommissionBreakdown(BaseResponseSchema):
    period: str
    personal: float = 0.0
    team_bonus: float = 0.0
    direct_referral: float = 0.0
    indirect_referral: float = 0.0
    level_bonus: float = 0.0
    total: float = 0.0


class CommissionForecast(BaseResponseSchema):
    user_id: str
    level: str
    period: str
    next_period: str
    current: CommissionBreakdown
    history: List[CommissionBreakdown] = []
    trend_projection: float = 0.0
    projected_commission: float = 0.0
    growth_rate: float = 0.0
    trend: str = Field("STABLE", description="UP, DOWN or STABLE")
    confidence: float = Field(..., ge=0, le=1)


class CommissionSummary(BaseResponseSchema):
    user_id: str
    current_month: float
    previous_month: float
    year_to_date: float
    average_monthly: float
    growth_rate: float


class CommissionFactor(BaseResponseSchema):
    name: str
    impact: float = Field(..., ge=0, description="Estimated commission at stake")
    description: str
    suggestion: str


class CommissionFactorAnalysis(BaseResponseSchema):
    user_id: str
    period: str
    factors: List[CommissionFactor] = []
    optimization_potential: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.factors


class CommissionLine(BaseResponseSchema):
    user_id: str
    commission_type: str
    depth: int = Field(..., description="0 = seller, 1 = direct referrer, ...")
    rate: float
    amount: float


class OrderCommission(BaseResponseSchema):
    order_id: str
    seller_id: str
    order_amount: float
    status: str
    lines: List[CommissionLine] = []
    total_commission: float = 0.0
    untiered_ancestors: List[str] = []

    @property
    def is_empty(self) -> bool:
        return not self.lines


# ==================== Maintenance ====================

class ValidationReport(BaseResponseSchema):
    user_id: str
    period: str
    valid: bool
    errors: List[str] = []
    warnings: List[str] = []


class WarmupReport(BaseResponseSchema):
    period: str
    requested: int
    succeeded: int
    failed: int
    failed_user_ids: List[str] = []


class CacheInfo(BaseResponseSchema):
    backend: str
    namespace: str
    keys: Optional[int] = None
    hits: int = 0
    misses: int = 0
    errors: int = 0
