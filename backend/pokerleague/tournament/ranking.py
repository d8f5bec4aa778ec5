"""
Season Ranking Engine.

완료된 정규 라운드 결과 전체로 시즌 순위표를 계산.

핵심 규칙:
1. 플레이어별 라운드 번호 -> 포인트
2. 완료 라운드 수 >= discard_after_round 이고 discard_count > 0 이면
   최악 N개 라운드 제외 (불참 라운드 = 0점, 안정 정렬로 동점 처리)
3. 정렬: 점수 내림차순 -> 최고 순위 오름차순 -> 참가 라운드 수 내림차순
4. 시즌 파이널 테이블 적립금 = 각 라운드 자체 설정으로 재계산한 적립금 합
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pokerleague.logging_config import get_logger

from .models import Round, RoundResult, RoundStatus, TournamentSettings
from .settlement import PrizeCalculator

logger = get_logger(__name__)


@dataclass
class RankingEntry:
    """Single season standings entry."""

    player_id: int
    total_points: int = 0
    round_points: Dict[int, int] = field(default_factory=dict)
    rounds_played: int = 0
    best_position: Optional[int] = None
    average_position: float = 0.0
    total_prize: Decimal = Decimal("0")
    total_entries: Decimal = Decimal("0")
    discarded_rounds: Tuple[int, ...] = ()
    points_with_discards: int = 0
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "player_id": self.player_id,
            "total_points": self.total_points,
            "points_with_discards": self.points_with_discards,
            "round_points": {str(k): v for k, v in sorted(self.round_points.items())},
            "discarded_rounds": list(self.discarded_rounds),
            "rounds_played": self.rounds_played,
            "best_position": self.best_position,
            "average_position": self.average_position,
            "total_prize": str(self.total_prize),
            "total_entries": str(self.total_entries),
        }


@dataclass(frozen=True)
class SeasonPrizePool:
    """Season pool report alongside the standings."""

    total_gross: Decimal
    final_table_pot: Decimal
    percentage: Optional[Decimal]
    fixed_value: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_gross": str(self.total_gross),
            "final_table_pot": str(self.final_table_pot),
            "percentage": str(self.percentage) if self.percentage is not None else None,
            "fixed_value": str(self.fixed_value) if self.fixed_value is not None else None,
        }


@dataclass
class RankingSnapshot:
    """Complete standings table."""

    entries: List[RankingEntry] = field(default_factory=list)
    completed_round_numbers: Tuple[int, ...] = ()
    discards_active: bool = False
    final_table_prize_pool: Decimal = Decimal("0")

    def top(self, count: int) -> List[RankingEntry]:
        return self.entries[:count]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "completed_rounds": len(self.completed_round_numbers),
            "discards_active": self.discards_active,
            "final_table_prize_pool": str(self.final_table_prize_pool),
        }


def select_discards(
    round_points: Dict[int, int],
    completed_round_numbers: Sequence[int],
    discard_count: int,
) -> Tuple[int, ...]:
    """
    Round numbers to drop for one player.

    Vector covers every completed round (missing -> 0), ascending by round
    number, then stable-sorted ascending by points.
    """
    vector = [(number, round_points.get(number, 0)) for number in sorted(completed_round_numbers)]
    worst_first = sorted(vector, key=lambda item: item[1])
    return tuple(number for number, _ in worst_first[:discard_count])


class RankingEngine:
    """
    Season standings calculator.

    Pure: takes the immutable RoundResult history and never writes.
    """

    def __init__(self, settings: TournamentSettings):
        self.settings = settings
        self.calculator = PrizeCalculator(settings)

    @staticmethod
    def _regular_completed(rounds: Sequence[Round]) -> List[Round]:
        return sorted(
            (
                r for r in rounds
                if r.status == RoundStatus.COMPLETED and not r.is_final_table
            ),
            key=lambda r: r.round_number,
        )

    @staticmethod
    def _results_by_round(results: Sequence[RoundResult]) -> Dict[int, List[RoundResult]]:
        grouped: Dict[int, List[RoundResult]] = defaultdict(list)
        for result in results:
            grouped[result.round_id].append(result)
        return grouped

    def discards_active(self, completed_count: int) -> bool:
        return (
            self.settings.discard_count > 0
            and completed_count >= self.settings.discard_after_round
        )

    def compute(
        self,
        rounds: Sequence[Round],
        results: Sequence[RoundResult],
    ) -> RankingSnapshot:
        """Build the standings table from completed regular rounds."""
        completed = self._regular_completed(rounds)
        by_round = self._results_by_round(results)
        completed_numbers = tuple(r.round_number for r in completed)
        discards_on = self.discards_active(len(completed))

        entries: Dict[int, RankingEntry] = {}
        positions: Dict[int, List[int]] = defaultdict(list)

        for round_ in completed:
            buy_in = round_.effective_buy_in(self.settings)
            rebuy_value = round_.effective_rebuy_value(self.settings)

            for result in by_round.get(round_.id, []):
                entry = entries.get(result.player_id)
                if entry is None:
                    entry = entries[result.player_id] = RankingEntry(player_id=result.player_id)

                entry.round_points[round_.round_number] = (
                    entry.round_points.get(round_.round_number, 0) + result.points
                )
                entry.total_points += result.points
                entry.rounds_played += 1
                entry.total_prize += result.prize + result.knockout_earnings
                entry.total_entries += buy_in + result.rebuys * rebuy_value
                positions[result.player_id].append(result.position)

        for player_id, entry in entries.items():
            played = positions[player_id]
            entry.best_position = min(played) if played else None
            entry.average_position = round(sum(played) / len(played), 2) if played else 0.0

            if discards_on:
                entry.discarded_rounds = select_discards(
                    entry.round_points,
                    completed_numbers,
                    self.settings.discard_count,
                )
                entry.points_with_discards = sum(
                    points
                    for number, points in entry.round_points.items()
                    if number not in entry.discarded_rounds
                )
            else:
                entry.points_with_discards = entry.total_points

        ordered = sorted(
            entries.values(),
            key=lambda e: (
                -(e.points_with_discards if discards_on else e.total_points),
                e.best_position if e.best_position is not None else float("inf"),
                -e.rounds_played,
                e.player_id,
            ),
        )
        for rank, entry in enumerate(ordered, 1):
            entry.rank = rank

        pool = self.season_prize_pool(rounds, results)
        logger.debug(
            "rankings_computed",
            players=len(ordered),
            completed_rounds=len(completed),
            discards_active=discards_on,
        )
        return RankingSnapshot(
            entries=ordered,
            completed_round_numbers=completed_numbers,
            discards_active=discards_on,
            final_table_prize_pool=pool.final_table_pot,
        )

    def season_prize_pool(
        self,
        rounds: Sequence[Round],
        results: Sequence[RoundResult],
    ) -> SeasonPrizePool:
        """Gross of completed regular rounds and the accumulated final-table pot."""
        by_round = self._results_by_round(results)
        total_gross = Decimal("0")
        pot = Decimal("0")

        for round_ in self._regular_completed(rounds):
            round_results = by_round.get(round_.id, [])
            seated = round_.seated_count or len(round_results)
            rebuys = sum(r.rebuys for r in round_results)
            total_gross += self.calculator.gross_pool(round_, seated, rebuys)
            pot += self.calculator.final_table_cut(round_, seated, rebuys)

        policy = self.settings.final_table_cut
        return SeasonPrizePool(
            total_gross=total_gross,
            final_table_pot=pot,
            percentage=policy.percentage,
            fixed_value=policy.fixed_value,
        )
