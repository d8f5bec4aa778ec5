"""
Round Prize Calculator.

라운드 종료 시 상금 풀 및 순위별 상금 계산.

Features:
- 총 엔트리 / 총 상금 풀 / 파이널 테이블 적립금 / 순 상금 풀 계산
- 순위별 분배 비율 기반 상금 (1위부터, 정수 단위 반올림)
- 딜러 항목 + 수동 수정 가능한 지급표 (PayoutSheet)
- 저장 전 잔액 검증 (|상금 합 + 딜러 - 순 상금 풀| < 1)

Usage:
    calculator = PrizeCalculator(settings)
    sheet = calculator.build_sheet(round_, state)
    sheet.set_prize(1, Decimal("2000"))
    sheet.require_balanced()
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pokerleague.logging_config import get_logger
from pokerleague.utils.errors import ImbalancedDistributionError, IncompletePositionsError

from .elimination import EliminationState
from .models import Number, Round, RoundType, TournamentSettings, to_decimal

logger = get_logger(__name__)

# 금액 반올림 단위 / 허용 오차
MONEY_UNIT = Decimal("1")
BALANCE_TOLERANCE = Decimal("1")

# 파이널 테이블은 1~3위가 모두 확정되어야 분배
FINAL_TABLE_REQUIRED_POSITIONS = 3


def round_money(value: Number) -> Decimal:
    """Round a monetary amount to whole units (half-up)."""
    return to_decimal(value).quantize(MONEY_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PoolBreakdown:
    """Pool sanity totals for one round."""

    total_entries: int
    gross_pool: Decimal
    final_table_cut: Decimal
    net_pool: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "gross_pool": str(self.gross_pool),
            "final_table_cut": str(self.final_table_cut),
            "net_pool": str(self.net_pool),
        }


@dataclass
class PayoutLine:
    """지급표 한 줄."""

    position: int
    percentage: Decimal
    amount: Decimal
    player_id: Optional[int] = None
    edited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "percentage": str(self.percentage),
            "amount": str(self.amount),
            "player_id": self.player_id,
            "edited": self.edited,
        }


@dataclass
class PayoutSheet:
    """
    Editable payout proposal.

    Every prize and the dealer line stay editable until confirmation;
    confirmation is only allowed while the sheet is balanced.
    """

    round_id: Optional[int]
    breakdown: PoolBreakdown
    lines: List[PayoutLine] = field(default_factory=list)
    dealer_amount: Decimal = Decimal("0")
    is_final_table: bool = False

    @property
    def net_pool(self) -> Decimal:
        return self.breakdown.net_pool

    @property
    def distributed(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))

    @property
    def difference(self) -> Decimal:
        """distributed + dealer - net pool."""
        return self.distributed + self.dealer_amount - self.net_pool

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < BALANCE_TOLERANCE

    def line_for(self, position: int) -> Optional[PayoutLine]:
        for line in self.lines:
            if line.position == position:
                return line
        return None

    def prize_for(self, position: int) -> Decimal:
        line = self.line_for(position)
        return line.amount if line else Decimal("0")

    def set_prize(self, position: int, amount: Number) -> None:
        """Manually override one position's prize (adds a line if needed)."""
        if position <= 0:
            raise ValueError("Position must be a positive integer.")
        value = to_decimal(amount)
        if value < 0:
            raise ValueError("Prize cannot be negative.")

        line = self.line_for(position)
        if line is None:
            line = PayoutLine(position=position, percentage=Decimal("0"), amount=value)
            self.lines.append(line)
            self.lines.sort(key=lambda item: item.position)
        line.amount = value
        line.edited = True

    def set_dealer(self, amount: Number) -> None:
        value = to_decimal(amount)
        if value < 0:
            raise ValueError("Dealer amount cannot be negative.")
        self.dealer_amount = value

    def assign_players(self, position_map: Mapping[int, int]) -> None:
        """Attach finishing players (position -> player_id) to lines."""
        for line in self.lines:
            line.player_id = position_map.get(line.position)

    def missing_positions(self) -> List[int]:
        """Paid positions that do not yet have a player."""
        return [
            line.position
            for line in self.lines
            if line.amount > 0 and line.player_id is None
        ]

    def prizes_by_player(self) -> Dict[int, Decimal]:
        return {
            line.player_id: line.amount
            for line in self.lines
            if line.player_id is not None
        }

    def require_balanced(self) -> None:
        if not self.is_balanced:
            raise ImbalancedDistributionError(
                distributed=self.distributed + self.dealer_amount,
                net_pool=self.net_pool,
                difference=self.difference,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "is_final_table": self.is_final_table,
            **self.breakdown.to_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "dealer_amount": str(self.dealer_amount),
            "distributed": str(self.distributed),
            "difference": str(self.difference),
            "is_balanced": self.is_balanced,
        }


class PrizeCalculator:
    """
    라운드 상금 계산기.

    순수 계산만 담당하며 저장은 세션 엔진이 처리합니다.
    """

    def __init__(self, settings: TournamentSettings):
        self.settings = settings

    # =========================================================================
    # Pool
    # =========================================================================

    @staticmethod
    def total_entries(seated_count: int, total_rebuys: int) -> int:
        return seated_count + total_rebuys

    def gross_pool(self, round_: Round, seated_count: int, total_rebuys: int) -> Decimal:
        buy_in = round_.effective_buy_in(self.settings)
        rebuy = round_.effective_rebuy_value(self.settings)
        return seated_count * buy_in + total_rebuys * rebuy

    def final_table_cut(self, round_: Round, seated_count: int, total_rebuys: int) -> Decimal:
        """
        Share withheld for the season final table.

        fixed: fixed_value x (2 for freezeout) x total_entries
        percentage: gross_pool x percentage / 100
        단일 토너먼트 시즌은 파이널 테이블이 없으므로 0.
        """
        if self.settings.is_single_tournament or round_.is_final_table:
            return Decimal("0")

        policy = self.settings.final_table_cut
        entries = self.total_entries(seated_count, total_rebuys)
        if policy.is_fixed:
            multiplier = 2 if round_.round_type == RoundType.FREEZEOUT else 1
            return round_money(policy.fixed_value * multiplier * entries)

        percentage = policy.percentage or Decimal("0")
        gross = self.gross_pool(round_, seated_count, total_rebuys)
        return round_money(gross * percentage / 100)

    def regular_pool(self, round_: Round, seated_count: int, total_rebuys: int) -> PoolBreakdown:
        gross = self.gross_pool(round_, seated_count, total_rebuys)
        cut = self.final_table_cut(round_, seated_count, total_rebuys)
        return PoolBreakdown(
            total_entries=self.total_entries(seated_count, total_rebuys),
            gross_pool=gross,
            final_table_cut=cut,
            net_pool=max(Decimal("0"), gross - cut),
        )

    # =========================================================================
    # Distribution
    # =========================================================================

    @staticmethod
    def prize_amount(net_pool: Decimal, percentage: Decimal) -> Decimal:
        return round_money(net_pool * percentage / 100)

    def _lines(
        self,
        net_pool: Decimal,
        distribution: Sequence[Decimal],
        max_position: int,
    ) -> List[PayoutLine]:
        lines = []
        for position, percentage in enumerate(distribution, 1):
            if position > max_position:
                break
            lines.append(
                PayoutLine(
                    position=position,
                    percentage=percentage,
                    amount=self.prize_amount(net_pool, percentage),
                )
            )
        return lines

    def regular_payouts(
        self,
        round_: Round,
        seated_count: int,
        total_rebuys: int,
        position_map: Optional[Mapping[int, int]] = None,
        dealer_amount: Number = 0,
    ) -> PayoutSheet:
        """Per-position prizes for a regular/freezeout/knockout round."""
        breakdown = self.regular_pool(round_, seated_count, total_rebuys)
        sheet = PayoutSheet(
            round_id=round_.id,
            breakdown=breakdown,
            lines=self._lines(
                breakdown.net_pool,
                self.settings.prize_distribution,
                max(seated_count, 1),
            ),
            dealer_amount=to_decimal(dealer_amount),
        )
        if position_map is not None:
            sheet.assign_players(position_map)
        return sheet

    def final_table_payouts(
        self,
        round_: Round,
        season_pot: Number,
        position_map: Mapping[int, int],
        seated_count: int,
        dealer_amount: Number = 0,
    ) -> PayoutSheet:
        """
        Final-table prizes from the accumulated season pot.

        1~3위가 모두 확정되어야 계산. 4·5위는 해당 순위가 존재할 때만 지급.
        """
        required = range(1, min(FINAL_TABLE_REQUIRED_POSITIONS, seated_count) + 1)
        missing = [position for position in required if position not in position_map]
        if missing:
            raise IncompletePositionsError(missing)

        pot = round_money(season_pot)
        breakdown = PoolBreakdown(
            total_entries=seated_count,
            gross_pool=pot,
            final_table_cut=Decimal("0"),
            net_pool=pot,
        )
        sheet = PayoutSheet(
            round_id=round_.id,
            breakdown=breakdown,
            lines=self._lines(pot, self.settings.final_table_distribution, seated_count),
            dealer_amount=to_decimal(dealer_amount),
            is_final_table=True,
        )
        sheet.assign_players(position_map)
        return sheet

    def build_sheet(
        self,
        round_: Round,
        state: EliminationState,
        season_pot: Number = 0,
        dealer_amount: Number = 0,
    ) -> PayoutSheet:
        """Payout proposal from the tracker's current finishing order."""
        position_map = state.position_map()
        if round_.is_final_table:
            sheet = self.final_table_payouts(
                round_,
                season_pot,
                position_map,
                state.seated_count,
                dealer_amount,
            )
        else:
            sheet = self.regular_payouts(
                round_,
                state.seated_count,
                state.total_rebuys,
                position_map,
                dealer_amount,
            )

        logger.debug(
            "payout_sheet_built",
            round_id=round_.id,
            net_pool=str(sheet.net_pool),
            distributed=str(sheet.distributed),
            is_final_table=sheet.is_final_table,
        )
        return sheet
