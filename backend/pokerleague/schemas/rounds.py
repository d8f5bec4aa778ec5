"""Round operation payloads."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pokerleague.tournament.models import ResultEntry, RoundType


class CreateRoundRequest(BaseModel):
    """Round creation request."""

    model_config = ConfigDict(populate_by_name=True)

    round_number: int = Field(..., gt=0)
    round_type: RoundType = RoundType.REGULAR
    buy_in_value: Decimal | None = Field(default=None, ge=0)
    rebuy_value: Decimal | None = Field(default=None, ge=0)
    knockout_value: Decimal | None = Field(default=None, ge=0)
    seated_player_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_seats(self) -> "CreateRoundRequest":
        if len(set(self.seated_player_ids)) != len(self.seated_player_ids):
            raise ValueError("A player can only be seated once")
        return self


class ResultLine(BaseModel):
    """One confirmed result line."""

    player_id: int
    position: int = Field(..., gt=0)
    rebuys: int = Field(default=0, ge=0)
    knockout_earnings: Decimal = Field(default=Decimal("0"), ge=0)
    prize: Decimal = Field(default=Decimal("0"), ge=0)

    def to_entry(self) -> ResultEntry:
        return ResultEntry(
            player_id=self.player_id,
            position=self.position,
            rebuys=self.rebuys,
            knockout_earnings=self.knockout_earnings,
            prize=self.prize,
        )


class CompleteRoundRequest(BaseModel):
    """Round completion request (confirmed finishing order and prizes)."""

    results: list[ResultLine] = Field(default_factory=list)
    dealer_amount: Decimal = Field(default=Decimal("0"), ge=0)
    confirm_early_finish: bool = False

    @model_validator(mode="after")
    def validate_unique(self) -> "CompleteRoundRequest":
        players = [line.player_id for line in self.results]
        if len(set(players)) != len(players):
            raise ValueError("Each player can appear only once")
        positions = [line.position for line in self.results]
        if len(set(positions)) != len(positions):
            raise ValueError("Each position can be assigned only once")
        return self

    def to_entries(self) -> list[ResultEntry] | None:
        """None when no lines were sent (engine builds them from the tracker)."""
        if not self.results:
            return None
        return [line.to_entry() for line in self.results]
