import pytest

from teamperf.models import UserLevel, UserStatus
from teamperf.schemas.performance import LeaderboardType
from teamperf.services.performance.ranking_service import RankingService
from tests.conftest import IN_FEBRUARY, fixed_clock


async def build_board(network):
    await network.user("A")
    await network.user("B")
    await network.user("C")
    await network.user("N", level=UserLevel.NORMAL)
    await network.user("X", status=UserStatus.INACTIVE)
    await network.order("A", 300)
    await network.order("B", 100)
    await network.order("C", 200)
    await network.order("N", 900)
    await network.order("X", 900)


async def test_period_without_orders_gives_empty_board(service, network):
    await build_board(network)

    board = await service.ranking.get_performance_leaderboard("personal", "2023-01")

    assert board.items == []
    assert board.is_empty


async def test_personal_board_is_sorted_and_ranked(service, network):
    await build_board(network)

    board = await service.ranking.get_performance_leaderboard(LeaderboardType.PERSONAL, "2024-03")

    assert [(i.user_id, i.rank, i.value) for i in board.items] == [
        ("A", 1, 300),
        ("C", 2, 200),
        ("B", 3, 100),
    ]
    assert board.limit == 50


async def test_limit(service, network):
    await build_board(network)

    board = await service.ranking.get_performance_leaderboard("personal", "2024-03", limit=2)

    assert [i.user_id for i in board.items] == ["A", "C"]


async def test_new_entrants_have_no_rank_change(service, network):
    await build_board(network)

    board = await service.ranking.get_performance_leaderboard("personal", "2024-03")

    for item in board.items:
        assert item.is_new_entrant
        assert item.previous_rank is None
        assert item.rank_change is None


async def test_rank_change_against_previous_period(service, network):
    await build_board(network)
    await network.order("B", 500, created_at=IN_FEBRUARY)
    await network.order("A", 100, created_at=IN_FEBRUARY)

    board = await service.ranking.get_performance_leaderboard("personal", "2024-03")
    items = {i.user_id: i for i in board.items}

    assert (items["A"].previous_rank, items["A"].rank_change) == (2, 1)
    assert (items["B"].previous_rank, items["B"].rank_change) == (1, -2)
    assert items["C"].is_new_entrant
    assert not items["A"].is_new_entrant


async def test_rank_changes_cover_boards_deeper_than_the_lookback(session_factory, cache, config, network):
    ranking = RankingService(
        session_factory, cache,
        config=config.model_copy(update={"RANK_DELTA_LOOKBACK_LIMIT": 2}),
        clock=fixed_clock,
    )
    for seller, amount in [("a", 400), ("b", 300), ("c", 200), ("d", 100)]:
        await network.user(seller)
        await network.order(seller, amount)
        await network.order(seller, amount, created_at=IN_FEBRUARY)

    board = await ranking.get_performance_leaderboard("personal", "2024-03", limit=4)

    assert [(i.user_id, i.previous_rank, i.rank_change) for i in board.items] == [
        ("a", 1, 0),
        ("b", 2, 0),
        ("c", 3, 0),
        ("d", 4, 0),
    ]
    assert not any(i.is_new_entrant for i in board.items)


async def test_team_board_sums_the_whole_subtree(service, network):
    await network.user("A")
    await network.user("B", parent="A")
    await network.user("C")
    await network.order("A", 100)
    await network.order("B", 300)
    await network.order("C", 350)

    board = await service.ranking.get_performance_leaderboard("team", "2024-03")

    assert [(i.user_id, i.value) for i in board.items] == [("A", 400), ("C", 350), ("B", 300)]


async def test_team_board_treats_underscore_ids_literally(service, network):
    await network.user("a_1")
    await network.user("aX1")
    await network.order("aX1", 500)

    board = await service.ranking.get_performance_leaderboard("team", "2024-03")
    team = await service.team.calculate_team_performance("a_1", "2024-03")

    assert [(i.user_id, i.value) for i in board.items] == [("aX1", 500)]
    assert team.team_sales == 0


async def test_referral_board_ranks_by_direct_referrals(service, network):
    await network.user("A")
    await network.user("B")
    await network.user("A1", parent="A")
    await network.user("A2", parent="A")
    await network.user("B1", parent="B")
    await network.order("A1", 80)
    await network.order("B1", 20)

    board = await service.ranking.get_performance_leaderboard("referral", "2024-03")

    assert [(i.user_id, i.value, i.referral_sales) for i in board.items] == [
        ("A", 2, 80),
        ("B", 1, 20),
    ]


async def test_user_rank(service, network):
    await build_board(network)

    ranked = await service.ranking.get_user_rank("personal", "C", "2024-03")
    unranked = await service.ranking.get_user_rank("personal", "N", "2024-03")

    assert ranked.rank == 2
    assert ranked.value == 200
    assert ranked.total_participants == 3
    assert ranked.percentile == 66.67
    assert unranked.rank == -1
    assert unranked.is_empty


async def test_leaderboard_around_user(service, network):
    await build_board(network)

    around = await service.ranking.get_leaderboard_around_user("personal", "A", "2024-03", radius=1)
    missing = await service.ranking.get_leaderboard_around_user("personal", "N", "2024-03")

    assert [i.user_id for i in around] == ["A", "C"]
    assert missing == []


async def test_leaderboard_summary(service, network):
    await build_board(network)

    summary = await service.ranking.get_leaderboard_summary("personal", "2024-03")

    assert summary.total_participants == 3
    assert summary.top_value == 300
    assert summary.average_value == 200
    assert summary.median_value == 200
    assert summary.top10_percent_value == 300


async def test_unknown_board_type(service):
    with pytest.raises(ValueError, match="Unknown leaderboard type"):
        await service.ranking.get_performance_leaderboard("weekly", "2024-03")


async def test_invalid_limit(service):
    with pytest.raises(ValueError):
        await service.ranking.get_performance_leaderboard("personal", "2024-03", limit=-1)
    with pytest.raises(ValueError):
        await service.ranking.get_performance_leaderboard("personal", "2024-03", limit=0)


async def test_zero_limit_is_rejected_not_defaulted(service, network):
    await build_board(network)

    result = await service.get_leaderboard("personal", "2024-03", limit=0)
    default = await service.get_leaderboard("personal", "2024-03")

    assert result.status == "error"
    assert result.error_type == "ValueError"
    assert default.data.limit == 50
