"""시즌 순위 계산 테스트 (최악 N개 라운드 제외 포함)."""

from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from pokerleague.tournament.models import Round, RoundResult, RoundStatus, TournamentSettings
from pokerleague.tournament.ranking import RankingEngine, select_discards


def completed_round(number: int, players=(1, 2, 3), **overrides) -> Round:
    values = {
        "id": number,
        "round_number": number,
        "status": RoundStatus.COMPLETED,
        "buy_in_value": Decimal("600"),
        "seated_player_ids": tuple(players),
    }
    values.update(overrides)
    return Round(**values)


def result(round_id: int, player_id: int, position: int, points: int, **extra) -> RoundResult:
    return RoundResult(
        round_id=round_id,
        player_id=player_id,
        position=position,
        points=points,
        **extra,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def three_rounds():
    """선수 3명, 3라운드. 선수 3은 2라운드 불참."""
    rounds = [
        completed_round(1),
        completed_round(2, players=(1, 2)),
        completed_round(3),
    ]
    results = [
        result(1, 1, 1, 10),
        result(1, 2, 2, 7),
        result(1, 3, 3, 5),
        result(2, 2, 1, 10),
        result(2, 1, 2, 7),
        result(3, 3, 1, 10),
        result(3, 1, 2, 7),
        result(3, 2, 3, 5),
    ]
    return rounds, results


# =============================================================================
# Standings
# =============================================================================


class TestCompute:
    def test_totals_without_discards(self, three_rounds):
        snapshot = RankingEngine(TournamentSettings()).compute(*three_rounds)

        assert [e.player_id for e in snapshot.entries] == [1, 2, 3]
        first = snapshot.entries[0]
        assert first.total_points == 24
        assert first.rank == 1
        assert first.rounds_played == 3
        assert first.best_position == 1
        assert first.average_position == pytest.approx(1.67)
        assert first.round_points == {1: 10, 2: 7, 3: 7}
        assert not snapshot.discards_active

    def test_discards_drop_missing_round_first(self, three_rounds):
        engine = RankingEngine(TournamentSettings(discard_count=1, discard_after_round=3))
        snapshot = engine.compute(*three_rounds)

        assert snapshot.discards_active
        by_player = {e.player_id: e for e in snapshot.entries}
        assert by_player[3].discarded_rounds == (2,)
        assert by_player[3].points_with_discards == 15
        assert by_player[1].discarded_rounds == (2,)
        assert by_player[1].points_with_discards == 17
        assert by_player[2].points_with_discards == 17
        # 동점: 최고 순위 동일(1위) -> 참가 라운드 수 동일 -> player_id
        assert [e.player_id for e in snapshot.entries] == [1, 2, 3]

    def test_discards_inactive_before_threshold(self, three_rounds):
        engine = RankingEngine(TournamentSettings(discard_count=1, discard_after_round=4))
        snapshot = engine.compute(*three_rounds)

        assert not snapshot.discards_active
        assert all(e.discarded_rounds == () for e in snapshot.entries)

    def test_tie_broken_by_best_position(self):
        rounds = [completed_round(1), completed_round(2)]
        results = [
            result(1, 1, 1, 10),
            result(1, 2, 2, 7),
            result(2, 2, 2, 7),
            result(2, 1, 3, 4),
        ]
        snapshot = RankingEngine(TournamentSettings()).compute(rounds, results)

        # 둘 다 14점이지만 1번이 1위 경험
        assert [e.player_id for e in snapshot.entries] == [1, 2]

    def test_tie_broken_by_rounds_played(self):
        rounds = [completed_round(1), completed_round(2)]
        results = [result(1, 1, 1, 10), result(2, 2, 1, 5), result(1, 2, 2, 5)]
        snapshot = RankingEngine(TournamentSettings()).compute(rounds, results)
        assert [e.player_id for e in snapshot.entries] == [2, 1]

    def test_ignores_active_and_final_table_rounds(self, three_rounds):
        rounds, results = three_rounds
        rounds = rounds + [
            completed_round(4, status=RoundStatus.ACTIVE),
            completed_round(5, is_final_table=True),
        ]
        results = results + [result(4, 3, 1, 10), result(5, 3, 1, 10)]

        snapshot = RankingEngine(TournamentSettings()).compute(rounds, results)

        assert snapshot.completed_round_numbers == (1, 2, 3)
        assert {e.player_id: e.total_points for e in snapshot.entries}[3] == 15

    def test_prize_and_entries_totals(self):
        rounds = [completed_round(1)]
        results = [
            result(1, 1, 1, 10, prize=Decimal("1000"), knockout_earnings=Decimal("100"), rebuys=1),
        ]
        entry = RankingEngine(TournamentSettings()).compute(rounds, results).entries[0]

        assert entry.total_prize == Decimal("1100")
        assert entry.total_entries == Decimal("900")


class TestSeasonPrizePool:
    def test_accumulates_each_round_cut(self, three_rounds):
        rounds, results = three_rounds
        pool = RankingEngine(TournamentSettings()).season_prize_pool(rounds, results)

        # 1800 / 1200 / 1800 gross, 33.33% 반올림
        assert pool.total_gross == Decimal("4800")
        assert pool.final_table_pot == Decimal("600") + Decimal("400") + Decimal("600")
        assert pool.percentage == Decimal("33.33")

    def test_snapshot_reports_pot(self, three_rounds):
        snapshot = RankingEngine(TournamentSettings()).compute(*three_rounds)
        assert snapshot.final_table_prize_pool == Decimal("1600")


# =============================================================================
# Discard selection
# =============================================================================


class TestSelectDiscards:
    def test_missing_rounds_count_as_zero(self):
        assert select_discards({1: 5, 3: 8}, [1, 2, 3], 1) == (2,)

    def test_ties_resolved_by_round_number(self):
        assert select_discards({1: 5, 2: 5, 3: 10}, [1, 2, 3], 1) == (1,)

    def test_count_larger_than_rounds(self):
        assert select_discards({1: 5}, [1], 3) == (1,)

    @given(
        points=st.lists(st.integers(min_value=0, max_value=20), min_size=1, max_size=12),
        discard_count=st.integers(min_value=0, max_value=5),
    )
    @settings(max_examples=100)
    def test_discarded_rounds_are_the_worst(self, points, discard_count):
        round_points = {number: value for number, value in enumerate(points, 1)}
        completed = list(round_points)

        first = select_discards(round_points, completed, discard_count)
        second = select_discards(dict(reversed(list(round_points.items()))), completed, discard_count)

        assert first == second
        assert len(first) == min(discard_count, len(points))
        kept = [round_points[n] for n in completed if n not in first]
        if first and kept:
            assert max(round_points[n] for n in first) <= min(kept)
