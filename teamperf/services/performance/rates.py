"""
Commission rate tables and level-upgrade requirements.

Static business configuration keyed by UserLevel. Rates are fractions of the
sales they apply to; level bonuses are flat amounts per month.
"""
from dataclasses import dataclass
from typing import Optional

from teamperf.models.user import UserLevel


class CommissionType:
    PERSONAL = "PERSONAL_SALES"
    TEAM_BONUS = "TEAM_BONUS"
    DIRECT_REFERRAL = "DIRECT_REFERRAL"
    INDIRECT_REFERRAL = "INDIRECT_REFERRAL"
    LEVEL_BONUS = "LEVEL_BONUS"


# Seller's own sales
PERSONAL_SALES_RATES = {
    UserLevel.NORMAL: 0.0,
    UserLevel.VIP: 0.15,
    UserLevel.STAR_1: 0.18,
    UserLevel.STAR_2: 0.20,
    UserLevel.STAR_3: 0.22,
    UserLevel.STAR_4: 0.25,
    UserLevel.STAR_5: 0.30,
    UserLevel.DIRECTOR: 0.35,
}

# Sales of direct referrals, keyed by the referrer's level
DIRECT_REFERRAL_RATES = {
    UserLevel.NORMAL: 0.0,
    UserLevel.VIP: 0.10,
    UserLevel.STAR_1: 0.10,
    UserLevel.STAR_2: 0.10,
    UserLevel.STAR_3: 0.10,
    UserLevel.STAR_4: 0.10,
    UserLevel.STAR_5: 0.10,
    UserLevel.DIRECTOR: 0.10,
}

# Indexed by depth - 2: entry 0 is a referral's referral (depth 2), the last
# entry is depth 11. Deeper sales earn nothing.
INDIRECT_REFERRAL_RATES = [0.05, 0.04, 0.03, 0.02, 0.02, 0.01, 0.01, 0.01, 0.005, 0.005]
INDIRECT_TIER_COUNT = len(INDIRECT_REFERRAL_RATES)
MAX_TIERED_DEPTH = INDIRECT_TIER_COUNT + 1

# Team sales excluding the member's own
TEAM_BONUS_RATES = {
    UserLevel.NORMAL: 0.0,
    UserLevel.VIP: 0.01,
    UserLevel.STAR_1: 0.02,
    UserLevel.STAR_2: 0.03,
    UserLevel.STAR_3: 0.05,
    UserLevel.STAR_4: 0.07,
    UserLevel.STAR_5: 0.10,
    UserLevel.DIRECTOR: 0.15,
}

# Flat monthly amount, paid when the team had any sales that month
LEVEL_BONUS_AMOUNTS = {
    UserLevel.NORMAL: 0.0,
    UserLevel.VIP: 0.0,
    UserLevel.STAR_1: 200.0,
    UserLevel.STAR_2: 300.0,
    UserLevel.STAR_3: 400.0,
    UserLevel.STAR_4: 500.0,
    UserLevel.STAR_5: 600.0,
    UserLevel.DIRECTOR: 800.0,
}


def indirect_rate(depth: int) -> Optional[float]:
    """Rate for an indirect referral at depth (2 and up), or None past the last tier."""
    if depth < 2:
        raise ValueError(f"Indirect referral depth must be at least 2, got {depth}")
    index = depth - 2
    if index >= INDIRECT_TIER_COUNT:
        return None
    return INDIRECT_REFERRAL_RATES[index]


@dataclass(frozen=True)
class LevelRequirement:
    level: UserLevel
    min_team_sales: float
    min_direct_referrals: int
    min_team_size: int
    sub_level: Optional[UserLevel] = None
    min_sub_level_directs: int = 0


LEVEL_REQUIREMENTS = {
    UserLevel.STAR_1: LevelRequirement(UserLevel.STAR_1, 2_400, 0, 0),
    UserLevel.STAR_2: LevelRequirement(UserLevel.STAR_2, 12_000, 2, 2, UserLevel.STAR_1, 2),
    UserLevel.STAR_3: LevelRequirement(UserLevel.STAR_3, 72_000, 5, 5, UserLevel.STAR_2, 2),
    UserLevel.STAR_4: LevelRequirement(UserLevel.STAR_4, 360_000, 10, 10, UserLevel.STAR_3, 2),
    UserLevel.STAR_5: LevelRequirement(UserLevel.STAR_5, 1_200_000, 15, 15, UserLevel.STAR_4, 2),
    UserLevel.DIRECTOR: LevelRequirement(UserLevel.DIRECTOR, 6_000_000, 20, 20, UserLevel.STAR_5, 2),
}
