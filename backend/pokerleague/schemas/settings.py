"""Season settings schema (administrative record -> TournamentSettings)."""

from decimal import Decimal
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pokerleague.tournament.models import (
    DEFAULT_BUY_IN,
    DEFAULT_FINAL_TABLE_PERCENTAGE,
    DEFAULT_PRIZE_DISTRIBUTION,
    BlindLevel,
    FinalTableCutPolicy,
    TournamentSettings,
)
from pokerleague.utils.json_utils import json_loads

POSITION_FIELDS = (
    "first_place_percentage",
    "second_place_percentage",
    "third_place_percentage",
    "fourth_place_percentage",
    "fifth_place_percentage",
)

FINAL_TABLE_POSITION_FIELDS = (
    "final_table_1st_percentage",
    "final_table_2nd_percentage",
    "final_table_3rd_percentage",
    "final_table_4th_percentage",
    "final_table_5th_percentage",
)


def parse_blind_ladder(value: str) -> list[str]:
    """Split a comma-separated ladder ("100/200, 200/400, BREAK") into labels."""
    return [label.strip() for label in value.split(",") if label.strip()]


def canonical_distribution(
    listed: list[Decimal] | None,
    individual: list[Decimal | None],
) -> tuple[Decimal, ...]:
    """
    One ordered percentage list from either representation.

    The explicit list wins; otherwise the individual 1st..5th fields are used
    (trailing unset fields dropped). Falls back to 60/30/10 when nothing
    positive is configured.
    """
    if listed and any(p > 0 for p in listed):
        return tuple(listed)

    values = [p if p is not None else Decimal("0") for p in individual]
    while values and values[-1] <= 0:
        values.pop()
    if values and any(p > 0 for p in values):
        return tuple(values)
    return DEFAULT_PRIZE_DISTRIBUTION


class TournamentSettingsPayload(BaseModel):
    """Season settings as stored by the admin layer."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    blind_level_duration: int = Field(default=15, gt=0, description="Minutes per level")
    blind_levels: str = Field(
        default="100/200,200/400,300/600,BREAK,400/800,600/1200,800/1600,1000/2000",
        min_length=1,
        description="Comma-separated blind ladder",
    )
    level_durations: list[int | None] | None = Field(
        default=None,
        description="Per-level duration overrides in minutes, aligned with the ladder",
    )
    default_buy_in: Decimal = Field(default=DEFAULT_BUY_IN, ge=0)

    final_table_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    final_table_fixed_value: Decimal | None = Field(default=None, ge=0)
    final_table_top_players: int = Field(default=9, gt=0)
    total_rounds: int = Field(default=24, gt=0)

    # 분배 비율: 목록(JSON 문자열 허용) 또는 1~5위 개별 필드
    prize_distribution: list[Decimal] | None = None
    first_place_percentage: Decimal | None = None
    second_place_percentage: Decimal | None = None
    third_place_percentage: Decimal | None = None
    fourth_place_percentage: Decimal | None = None
    fifth_place_percentage: Decimal | None = None

    final_table_1st_percentage: Decimal | None = None
    final_table_2nd_percentage: Decimal | None = None
    final_table_3rd_percentage: Decimal | None = None
    final_table_4th_percentage: Decimal | None = None
    final_table_5th_percentage: Decimal | None = None

    discard_count: int = Field(default=0, ge=0)
    discard_after_round: int = Field(default=0, ge=0)
    max_rebuys_per_round: int = Field(default=2, ge=0)
    is_single_tournament: bool = False

    @field_validator("prize_distribution", mode="before")
    @classmethod
    def parse_distribution(cls, v: Any) -> Any:
        """Accept the JSON-string form stored by older records."""
        if isinstance(v, (str, bytes)):
            if not v.strip():
                return None
            try:
                return json_loads(v)
            except orjson.JSONDecodeError as exc:
                raise ValueError("prize_distribution must be a JSON list") from exc
        return v

    @field_validator("blind_levels")
    @classmethod
    def validate_ladder(cls, v: str) -> str:
        if not parse_blind_ladder(v):
            raise ValueError("blind_levels must contain at least one level")
        return v

    @model_validator(mode="after")
    def validate_final_table_cut(self) -> "TournamentSettingsPayload":
        """A positive fixed value replaces the percentage."""
        fixed = self.final_table_fixed_value
        if fixed is not None and fixed > 0 and self.final_table_percentage:
            raise ValueError(
                "Set either final_table_percentage or final_table_fixed_value, not both"
            )
        return self

    def cut_policy(self) -> FinalTableCutPolicy:
        if self.final_table_fixed_value:
            return FinalTableCutPolicy(percentage=None, fixed_value=self.final_table_fixed_value)
        return FinalTableCutPolicy(
            percentage=self.final_table_percentage or DEFAULT_FINAL_TABLE_PERCENTAGE,
        )

    def ladder(self) -> tuple[BlindLevel, ...]:
        overrides = self.level_durations or []
        levels = []
        for index, label in enumerate(parse_blind_ladder(self.blind_levels)):
            minutes = overrides[index] if index < len(overrides) else None
            levels.append(BlindLevel(label=label, duration_minutes=minutes or None))
        return tuple(levels)

    def to_domain(self) -> TournamentSettings:
        """Canonical engine configuration."""
        return TournamentSettings(
            blind_levels=self.ladder(),
            blind_level_duration=self.blind_level_duration,
            default_buy_in=self.default_buy_in or DEFAULT_BUY_IN,
            final_table_cut=self.cut_policy(),
            prize_distribution=canonical_distribution(
                self.prize_distribution,
                [getattr(self, name) for name in POSITION_FIELDS],
            ),
            final_table_distribution=canonical_distribution(
                None,
                [getattr(self, name) for name in FINAL_TABLE_POSITION_FIELDS],
            ),
            final_table_top_players=self.final_table_top_players,
            total_rounds=self.total_rounds,
            discard_count=self.discard_count,
            discard_after_round=self.discard_after_round,
            max_rebuys_per_round=self.max_rebuys_per_round,
            is_single_tournament=self.is_single_tournament,
        )
