from datetime import datetime, timezone

import pytest

from teamperf.core.exceptions import InvalidPeriodError
from teamperf.models import OrderStatus
from tests.conftest import IN_FEBRUARY


async def test_sales_orders_and_average(service, network):
    await network.user("A")
    january = datetime(2024, 1, 20, tzinfo=timezone.utc)
    await network.order("A", 100, buyer="buyer1", created_at=january)
    await network.order("A", 150, buyer="buyer2", created_at=january)

    perf = await service.personal.calculate_personal_performance("A", "2024-01")

    assert perf.sales_amount == 250
    assert perf.order_count == 2
    assert perf.average_order_value == 125
    assert perf.customer_count == 2
    # Clock is mid-March: January counts toward the year but not the month
    assert perf.month_to_date == 0
    assert perf.year_to_date == 250


async def test_repeat_customers(service, network):
    await network.user("A")
    await network.order("A", 100, buyer="buyer1")
    await network.order("A", 50, buyer="buyer1")
    await network.order("A", 80, buyer="buyer2")

    perf = await service.personal.calculate_personal_performance("A", "2024-03")

    assert perf.customer_count == 2
    assert perf.repeat_customers == 1
    assert perf.new_customers == 1
    assert perf.repeat_rate == 0.5
    assert perf.month_to_date == 230


async def test_only_qualifying_statuses_count(service, network):
    await network.user("A")
    await network.order("A", 100, status=OrderStatus.PAID)
    await network.order("A", 200, status=OrderStatus.SHIPPED)
    await network.order("A", 300, status=OrderStatus.DELIVERED)
    await network.order("A", 400, status=OrderStatus.PENDING)
    await network.order("A", 500, status=OrderStatus.CANCELLED)
    await network.order("A", 600, status=OrderStatus.REFUNDED)

    perf = await service.personal.calculate_personal_performance("A", "2024-03")

    assert perf.sales_amount == 600
    assert perf.order_count == 3


async def test_orders_outside_period_are_ignored(service, network):
    await network.user("A")
    await network.order("A", 100, created_at=IN_FEBRUARY)
    await network.order("A", 40)

    march = await service.personal.calculate_personal_performance("A", "2024-03")
    day = await service.personal.calculate_personal_performance("A", "2024-02-10")

    assert march.sales_amount == 40
    assert day.sales_amount == 100
    assert march.year_to_date == 140


async def test_no_orders_is_zero_not_error(service, network):
    await network.user("A")

    perf = await service.personal.calculate_personal_performance("A", "2024-03")

    assert perf.order_count == 0
    assert perf.average_order_value == 0
    assert perf.repeat_rate == 0
    assert perf.is_empty


async def test_invalid_period_raises(service):
    with pytest.raises(InvalidPeriodError):
        await service.personal.calculate_personal_performance("A", "2024-13")


async def test_results_are_cached_per_user_and_period(service, network):
    await network.user("A")
    await network.order("A", 100)

    first = await service.personal.calculate_personal_performance("A", "2024-03")
    await network.order("A", 100)
    cached = await service.personal.calculate_personal_performance("A", "2024-03")

    assert cached.sales_amount == first.sales_amount == 100

    await service.clear_user_cache("A")
    fresh = await service.personal.calculate_personal_performance("A", "2024-03")
    assert fresh.sales_amount == 200


async def test_monthly_growth_rate(service, network):
    await network.user("A")
    await network.user("B")
    await network.order("A", 100, created_at=IN_FEBRUARY)
    await network.order("A", 150)
    await network.order("B", 80)

    assert await service.personal.calculate_monthly_growth_rate("A", "2024-03") == 0.5
    assert await service.personal.calculate_monthly_growth_rate("A", "2024-02") == 0
    assert await service.personal.calculate_monthly_growth_rate("A", "2024-03-05") == 0.5
    assert await service.personal.calculate_monthly_growth_rate("B", "2024-03") == 0


async def test_best_performance_picks_the_strongest_month(service, network):
    await network.user("A")
    await network.order("A", 100, created_at=datetime(2024, 1, 20, tzinfo=timezone.utc))
    await network.order("A", 200, created_at=IN_FEBRUARY)
    await network.order("A", 100, created_at=IN_FEBRUARY)
    await network.order("A", 150)
    await network.order("A", 1000, status=OrderStatus.CANCELLED)

    best = await service.personal.get_best_performance("A")

    assert best.period == "2024-02"
    assert best.sales_amount == 300
    assert not best.is_empty


async def test_best_performance_ties_and_no_sales(service, network):
    await network.user("A")
    await network.user("B")
    await network.order("A", 100, created_at=datetime(2024, 1, 20, tzinfo=timezone.utc))
    await network.order("A", 100, created_at=IN_FEBRUARY)

    tied = await service.personal.get_best_performance("A")
    nothing = await service.personal.get_best_performance("B")

    assert tied.period == "2024-01"
    assert nothing.period is None
    assert nothing.sales_amount == 0
    assert nothing.is_empty
