from datetime import datetime, timezone

import pytest

from teamperf.core.exceptions import OrderNotFoundError, UserNotFoundError
from teamperf.core.period import parse_period
from teamperf.models import OrderStatus, UserLevel, UserStatus
from teamperf.services.performance.rates import (
    INDIRECT_REFERRAL_RATES,
    MAX_TIERED_DEPTH,
    CommissionType,
    indirect_rate,
)


def month(year, m):
    return datetime(year, m, 10, tzinfo=timezone.utc)


def test_indirect_rate_tiers():
    assert indirect_rate(2) == INDIRECT_REFERRAL_RATES[0]
    assert indirect_rate(MAX_TIERED_DEPTH) == INDIRECT_REFERRAL_RATES[-1]
    assert indirect_rate(MAX_TIERED_DEPTH + 1) is None
    with pytest.raises(ValueError):
        indirect_rate(1)


# ==================== Order commission ====================

async def test_order_commission_walks_the_upline(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    await network.user("B", parent="A", level=UserLevel.VIP)
    await network.user("C", parent="B", level=UserLevel.VIP)
    order_id = await network.order("C", 1000)

    commission = await service.commission.calculate_order_commission(order_id)
    lines = {line.user_id: line for line in commission.lines}

    assert set(lines) == {"A", "B", "C"}
    assert (lines["C"].commission_type, lines["C"].depth, lines["C"].amount) == (
        CommissionType.PERSONAL, 0, 150.0
    )
    assert (lines["B"].commission_type, lines["B"].depth, lines["B"].amount) == (
        CommissionType.DIRECT_REFERRAL, 1, 100.0
    )
    assert (lines["A"].commission_type, lines["A"].depth, lines["A"].amount) == (
        CommissionType.INDIRECT_REFERRAL, 2, 50.0
    )
    assert commission.total_commission == 300.0
    assert commission.untiered_ancestors == []


async def test_inactive_and_normal_ancestors_earn_nothing(service, network):
    await network.user("A", status=UserStatus.INACTIVE)
    await network.user("B", parent="A", level=UserLevel.NORMAL)
    await network.user("C", parent="B", level=UserLevel.NORMAL)
    order_id = await network.order("C", 1000)

    commission = await service.commission.calculate_order_commission(order_id)

    assert commission.lines == []
    assert commission.total_commission == 0


async def test_non_qualifying_order_has_no_commission(service, network):
    await network.user("A")
    order_id = await network.order("A", 1000, status=OrderStatus.PENDING)

    commission = await service.commission.calculate_order_commission(order_id)

    assert commission.is_empty
    assert commission.status == "PENDING"


async def test_ancestors_past_the_last_tier_are_reported(service, network):
    chain = await network.chain("u", MAX_TIERED_DEPTH + 2)
    order_id = await network.order(chain[-1], 100)

    commission = await service.commission.calculate_order_commission(order_id)

    assert commission.untiered_ancestors == [chain[0]]
    assert max(line.depth for line in commission.lines) == MAX_TIERED_DEPTH


async def test_missing_order(service):
    with pytest.raises(OrderNotFoundError):
        await service.commission.calculate_order_commission("missing")


# ==================== Period commission & forecast ====================

async def test_period_commission_breakdown(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    await network.user("B", parent="A")
    await network.user("C", parent="B")
    await network.order("A", 1000)
    await network.order("B", 500)
    await network.order("C", 200)

    breakdown = await service.forecast.calculate_period_commission(
        "A", UserLevel.STAR_1, parse_period("2024-03")
    )

    assert breakdown.personal == 180.0
    assert breakdown.team_bonus == 14.0
    assert breakdown.direct_referral == 50.0
    assert breakdown.indirect_referral == 10.0
    assert breakdown.level_bonus == 200.0
    assert breakdown.total == 454.0


async def test_level_bonus_needs_sales(service, network):
    await network.user("A", level=UserLevel.STAR_1)

    trend = await service.forecast.get_commission_trend("A", months=2, period="2024-03")

    assert [b.period for b in trend] == ["2024-02", "2024-03"]
    assert all(b.total == 0 for b in trend)


async def test_forecast_of_a_flat_history(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    for year, m in [(2023, 10), (2023, 11), (2023, 12), (2024, 1), (2024, 2), (2024, 3)]:
        await network.order("A", 1000, created_at=month(year, m))

    forecast = await service.forecast.predict_commission("A", "2024-03")

    assert forecast.next_period == "2024-04"
    assert [b.period for b in forecast.history][0] == "2023-10"
    assert len(forecast.history) == 6
    assert forecast.current.total == 380.0
    assert forecast.projected_commission == 380.0
    assert forecast.growth_rate == 0
    assert forecast.trend == "STABLE"
    assert forecast.confidence == 0.75


async def test_forecast_follows_growth(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    for i, (year, m) in enumerate([(2023, 10), (2023, 11), (2023, 12), (2024, 1), (2024, 2), (2024, 3)]):
        await network.order("A", 1000 * (i + 1), created_at=month(year, m))

    forecast = await service.forecast.predict_commission("A", "2024-03")

    assert forecast.trend == "UP"
    assert forecast.trend_projection > forecast.current.total
    assert forecast.projected_commission > forecast.current.total


async def test_commission_summary(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    for m in (1, 2, 3):
        await network.order("A", 1000, created_at=month(2024, m))

    summary = await service.forecast.get_commission_summary("A", "2024-03")

    assert summary.current_month == 380.0
    assert summary.previous_month == 380.0
    assert summary.year_to_date == 1140.0
    assert summary.average_monthly == 380.0
    assert summary.growth_rate == 0


async def test_commission_factors_flag_weak_team_and_referrals(service, network):
    await network.user("A")
    await network.user("B", parent="A", status=UserStatus.INACTIVE)
    await network.order("A", 2000)

    analysis = await service.forecast.analyze_commission_factors("A", "2024-03")
    factors = {f.name: f for f in analysis.factors}

    assert analysis.period == "2024-03"
    assert factors["personal_sales"].impact == 200
    assert factors["team_active_rate"].impact == 500
    assert factors["referral_conversion"].impact == 150
    assert analysis.optimization_potential == 850
    assert "Promote" in factors["personal_sales"].suggestion


async def test_commission_factors_for_march(service, network):
    await network.user("A")
    await network.user("B", parent="A")
    await network.order("A", 20000)
    await network.order("B", 500)

    analysis = await service.forecast.analyze_commission_factors("A", "2024-03")

    assert [f.name for f in analysis.factors] == ["personal_sales"]
    assert analysis.factors[0].impact == 2000
    assert analysis.factors[0].suggestion == "Keep the current sales pace"
    assert analysis.optimization_potential == 2000


async def test_commission_factors_unknown_user(service):
    with pytest.raises(UserNotFoundError):
        await service.forecast.analyze_commission_factors("ghost", "2024-03")


async def test_year_periods_forecast_their_last_month(service, network):
    await network.user("A", level=UserLevel.STAR_1)
    await network.order("A", 1000)

    forecast = await service.forecast.predict_commission("A", "2024")

    assert forecast.period == "2024-12"
    assert forecast.next_period == "2025-01"
