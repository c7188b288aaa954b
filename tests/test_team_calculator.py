import pytest

from teamperf.core.exceptions import UserNotFoundError
from teamperf.models import UserLevel, UserStatus
from teamperf.services.performance import TeamPerformanceCalculator
from tests.conftest import IN_MARCH, fixed_clock


async def build_team(network):
    await network.user("A", level=UserLevel.VIP)
    await network.user("B", parent="A", level=UserLevel.STAR_1)
    await network.user("C", parent="B", level=UserLevel.VIP)
    await network.order("A", 100)
    await network.order("B", 200)
    await network.order("C", 50)


async def test_team_members_follow_the_path_prefix(service, network):
    await network.user("A")
    await network.user("B", parent="A")

    a_members = await service.team.get_all_team_members("A")
    b_members = await service.team.get_all_team_members("B")

    assert [m.user_id for m in a_members] == ["B"]
    assert a_members[0].depth == 1
    assert a_members[0].parent_id == "A"
    assert b_members == []


async def test_team_members_include_every_depth(service, network):
    await build_team(network)
    await network.user("AB")

    members = await service.team.get_all_team_members("A")

    assert {m.user_id: m.depth for m in members} == {"B": 1, "C": 2}


async def test_team_performance(service, network):
    await build_team(network)

    perf = await service.team.calculate_team_performance("A", "2024-03")

    assert perf.member_count == 2
    assert perf.team_sales == 350
    assert perf.team_orders == 3
    assert perf.active_members == 2
    assert perf.active_rate == 1.0
    assert perf.productivity == 175
    assert perf.includes_self


async def test_team_sales_never_below_personal_sales(service, network):
    await build_team(network)

    for user_id in ("A", "B", "C"):
        personal = await service.personal.calculate_personal_performance(user_id, "2024-03")
        team = await service.team.calculate_team_performance(user_id, "2024-03")
        assert team.team_sales >= personal.sales_amount


async def test_team_can_exclude_the_owner(session_factory, cache, config, network):
    await build_team(network)
    calculator = TeamPerformanceCalculator(
        session_factory,
        cache,
        config=config.model_copy(update={"TEAM_INCLUDES_SELF": False}),
        clock=fixed_clock,
    )

    perf = await calculator.calculate_team_performance("A", "2024-03")

    assert perf.team_sales == 250
    assert perf.team_orders == 2
    assert not perf.includes_self


async def test_level_distribution(service, network):
    await build_team(network)

    perf = await service.team.calculate_team_performance("A", "2024-03")

    assert [(b.level, b.member_count, b.sales) for b in perf.level_distribution] == [
        ("VIP", 2, 150),
        ("STAR_1", 1, 200),
    ]


async def test_active_rate_and_new_members(service, network):
    await build_team(network)
    await network.user("D", parent="A", created_at=IN_MARCH)
    await network.user("E", parent="A", status=UserStatus.INACTIVE)

    perf = await service.team.calculate_team_performance("A", "2024-03")
    rate = await service.team.calculate_team_active_rate("A", "2024-03")

    assert perf.member_count == 4
    assert perf.new_members == 1
    assert perf.active_members == 2
    assert rate == perf.active_rate == 0.5


async def test_team_member_stats(service, network):
    await build_team(network)
    await network.user("D", parent="A", created_at=IN_MARCH)
    await network.user("E", parent="B", status=UserStatus.INACTIVE)

    stats = await service.team.get_team_member_stats("A")

    assert stats.total_members == 4
    assert stats.active_members == 3
    assert stats.new_members_this_month == 1
    assert stats.direct_members == 2


async def test_unknown_user(service):
    with pytest.raises(UserNotFoundError):
        await service.team.calculate_team_performance("ghost", "2024-03")
