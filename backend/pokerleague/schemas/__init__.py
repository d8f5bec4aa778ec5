"""Pydantic schemas for the settings boundary and round payloads."""

from pokerleague.schemas.rounds import CompleteRoundRequest, CreateRoundRequest, ResultLine
from pokerleague.schemas.settings import TournamentSettingsPayload

__all__ = [
    "CompleteRoundRequest",
    "CreateRoundRequest",
    "ResultLine",
    "TournamentSettingsPayload",
]
