"""
Round Session Data Models.

Immutable state representations for season rounds.
All mutations go through the RoundTimer / EliminationTracker and are
persisted by the TournamentSessionEngine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

Number = Union[int, float, str, Decimal]

# 레벨 라벨에 포함되면 휴식 레벨로 취급
BREAK_MARKERS = ("BREAK", "INTERVALO")

DEFAULT_BUY_IN = Decimal("600")
DEFAULT_FINAL_TABLE_PERCENTAGE = Decimal("33.33")
DEFAULT_PRIZE_DISTRIBUTION: Tuple[Decimal, ...] = (
    Decimal("60"),
    Decimal("30"),
    Decimal("10"),
)


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a monetary or percentage value to Decimal (None -> 0)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoundType(str, Enum):
    """Round formats."""

    REGULAR = "regular"  # 리바이 허용
    FREEZEOUT = "freezeout"  # 리바이 없음
    KNOCKOUT = "knockout"  # 탈락시킨 플레이어에게 바운티 지급


class RoundStatus(str, Enum):
    """Round lifecycle states."""

    SCHEDULED = "scheduled"  # 예정 (파이널 테이블 생성 직후)
    ACTIVE = "active"  # 진행 중
    COMPLETED = "completed"  # 결과 저장 완료


@dataclass(frozen=True)
class BlindLevel:
    """One rung of the blind ladder."""

    label: str
    duration_minutes: Optional[int] = None  # None -> season default

    @property
    def is_break(self) -> bool:
        upper = self.label.upper()
        return any(marker in upper for marker in BREAK_MARKERS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "duration_minutes": self.duration_minutes,
            "is_break": self.is_break,
        }


@dataclass(frozen=True)
class FinalTableCutPolicy:
    """
    Share of each regular round withheld for the season final table.

    Exactly one of percentage / fixed_value is set (fixed value is charged
    per entry, doubled for freezeout rounds).
    """

    percentage: Optional[Decimal] = DEFAULT_FINAL_TABLE_PERCENTAGE
    fixed_value: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if self.percentage is not None and self.fixed_value is not None:
            raise ValueError("final table cut is either a percentage or a fixed value")

    @property
    def is_fixed(self) -> bool:
        return self.fixed_value is not None


@dataclass(frozen=True)
class TournamentSettings:
    """
    Season configuration - read-only for the engine.

    Built at the settings boundary (schemas.settings) from the admin
    layer's record; percentages are already canonicalised into ordered lists.
    """

    blind_levels: Tuple[BlindLevel, ...] = field(
        default_factory=lambda: (
            BlindLevel("100/200"),
            BlindLevel("200/400"),
            BlindLevel("300/600"),
            BlindLevel("BREAK"),
            BlindLevel("400/800"),
            BlindLevel("600/1200"),
            BlindLevel("800/1600"),
            BlindLevel("1000/2000"),
        )
    )
    blind_level_duration: int = 15  # minutes
    default_buy_in: Decimal = DEFAULT_BUY_IN
    final_table_cut: FinalTableCutPolicy = field(default_factory=FinalTableCutPolicy)

    # 순위별 분배 비율 (1위부터)
    prize_distribution: Tuple[Decimal, ...] = DEFAULT_PRIZE_DISTRIBUTION
    final_table_distribution: Tuple[Decimal, ...] = DEFAULT_PRIZE_DISTRIBUTION
    final_table_top_players: int = 9
    total_rounds: int = 24

    # 최악 라운드 제외 규칙
    discard_count: int = 0
    discard_after_round: int = 0

    max_rebuys_per_round: int = 2
    is_single_tournament: bool = False

    @property
    def level_count(self) -> int:
        return len(self.blind_levels)

    def get_level(self, index: int) -> Optional[BlindLevel]:
        """Get blind level by 0-based index."""
        if 0 <= index < len(self.blind_levels):
            return self.blind_levels[index]
        return None

    def level_duration_seconds(self, index: int) -> int:
        """Configured duration of a level (override or season default) in seconds."""
        level = self.get_level(index)
        minutes = self.blind_level_duration
        if level is not None and level.duration_minutes:
            minutes = level.duration_minutes
        return int(minutes) * 60

    def is_break_level(self, index: int) -> bool:
        level = self.get_level(index)
        return level.is_break if level else False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blind_levels": [bl.to_dict() for bl in self.blind_levels],
            "blind_level_duration": self.blind_level_duration,
            "default_buy_in": str(self.default_buy_in),
            "final_table_percentage": (
                str(self.final_table_cut.percentage)
                if self.final_table_cut.percentage is not None
                else None
            ),
            "final_table_fixed_value": (
                str(self.final_table_cut.fixed_value)
                if self.final_table_cut.fixed_value is not None
                else None
            ),
            "prize_distribution": [str(p) for p in self.prize_distribution],
            "final_table_distribution": [str(p) for p in self.final_table_distribution],
            "discard_count": self.discard_count,
            "discard_after_round": self.discard_after_round,
        }


@dataclass(frozen=True)
class Round:
    """
    Round state - immutable.

    The Round row (plus its elimination snapshot) is the only mutable shared
    resource; timer fields are the single source of truth for every viewer.
    """

    id: Optional[int]
    round_number: int
    round_type: RoundType = RoundType.REGULAR
    buy_in_value: Optional[Decimal] = None
    rebuy_value: Optional[Decimal] = None
    knockout_value: Optional[Decimal] = None
    is_final_table: bool = False
    status: RoundStatus = RoundStatus.ACTIVE
    seated_player_ids: Tuple[int, ...] = ()

    # 리바이 마감 (휴식 레벨 도달 시)
    rebuy_deadline_passed: bool = False

    # 타이머 스냅샷
    is_started: bool = False
    current_level: int = 0
    is_paused: bool = False
    timer_started_at: Optional[datetime] = None
    time_remaining_seconds: int = 0

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_running(self) -> bool:
        return self.is_started and not self.is_paused and self.timer_started_at is not None

    @property
    def seated_count(self) -> int:
        return len(self.seated_player_ids)

    def effective_buy_in(self, settings: TournamentSettings) -> Decimal:
        """Round buy-in, or the season default when unset."""
        if self.buy_in_value:
            return self.buy_in_value
        return settings.default_buy_in

    def effective_rebuy_value(self, settings: TournamentSettings) -> Decimal:
        """
        Round rebuy price.

        Unset rebuy_value falls back to half the round buy-in.
        """
        if self.rebuy_value:
            return self.rebuy_value
        return self.effective_buy_in(settings) / 2

    @property
    def bounty_value(self) -> Decimal:
        if self.round_type != RoundType.KNOCKOUT:
            return Decimal("0")
        return self.knockout_value or Decimal("0")

    def touch(self, **changes: Any) -> "Round":
        """Return new instance with changes applied and updated_at bumped."""
        changes.setdefault("updated_at", utcnow())
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "round_number": self.round_number,
            "round_type": self.round_type.value,
            "buy_in_value": str(self.buy_in_value) if self.buy_in_value is not None else None,
            "rebuy_value": str(self.rebuy_value) if self.rebuy_value is not None else None,
            "knockout_value": (
                str(self.knockout_value) if self.knockout_value is not None else None
            ),
            "is_final_table": self.is_final_table,
            "status": self.status.value,
            "seated_player_ids": list(self.seated_player_ids),
            "rebuy_deadline_passed": self.rebuy_deadline_passed,
            "is_started": self.is_started,
            "current_level": self.current_level,
            "is_paused": self.is_paused,
            "timer_started_at": (
                self.timer_started_at.isoformat() if self.timer_started_at else None
            ),
            "time_remaining_seconds": self.time_remaining_seconds,
        }


@dataclass
class SeatedPlayer:
    """
    Transient per-round seat state.

    Lives only while the round is active; mutated exclusively by the
    EliminationTracker.
    """

    player_id: int
    is_active: bool = True
    position: Optional[int] = None
    eliminated_at: Optional[datetime] = None
    rebuys: int = 0
    knockout_earnings: Decimal = field(default_factory=lambda: Decimal("0"))

    # 복구(restore) 시 되돌리기 위한 기록
    eliminated_by: Optional[int] = None
    bounty_awarded: Decimal = field(default_factory=lambda: Decimal("0"))
    elimination_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "is_active": self.is_active,
            "position": self.position,
            "eliminated_at": self.eliminated_at.isoformat() if self.eliminated_at else None,
            "rebuys": self.rebuys,
            "knockout_earnings": str(self.knockout_earnings),
            "eliminated_by": self.eliminated_by,
            "bounty_awarded": str(self.bounty_awarded),
            "elimination_key": self.elimination_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SeatedPlayer":
        eliminated_at = data.get("eliminated_at")
        return cls(
            player_id=int(data["player_id"]),
            is_active=bool(data.get("is_active", True)),
            position=data.get("position"),
            eliminated_at=datetime.fromisoformat(eliminated_at) if eliminated_at else None,
            rebuys=int(data.get("rebuys", 0)),
            knockout_earnings=to_decimal(data.get("knockout_earnings")),
            eliminated_by=data.get("eliminated_by"),
            bounty_awarded=to_decimal(data.get("bounty_awarded")),
            elimination_key=data.get("elimination_key"),
        )


@dataclass(frozen=True)
class ResultEntry:
    """One confirmed line of a CompleteRound request."""

    player_id: int
    position: int
    rebuys: int = 0
    knockout_earnings: Decimal = Decimal("0")
    prize: Decimal = Decimal("0")


@dataclass(frozen=True)
class RoundResult:
    """Persisted per-player outcome of a completed round - immutable."""

    round_id: int
    player_id: int
    position: int
    points: int
    rebuys: int = 0
    knockout_earnings: Decimal = Decimal("0")
    prize: Decimal = Decimal("0")
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "round_id": self.round_id,
            "player_id": self.player_id,
            "position": self.position,
            "points": self.points,
            "rebuys": self.rebuys,
            "knockout_earnings": str(self.knockout_earnings),
            "prize": str(self.prize),
        }
