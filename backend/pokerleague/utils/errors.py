"""Custom exception classes for round session errors.

Provides structured error handling with error codes and messages the
admin UI can show as-is ("select who eliminated this player").
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for session errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Lookup errors
    ROUND_NOT_FOUND = "ROUND_NOT_FOUND"
    PLAYER_NOT_SEATED = "PLAYER_NOT_SEATED"

    # Lifecycle / timer errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    REBUY_NOT_ALLOWED = "REBUY_NOT_ALLOWED"

    # Elimination errors
    MISSING_ELIMINATOR = "MISSING_ELIMINATOR"

    # Prize errors
    IMBALANCED_DISTRIBUTION = "IMBALANCED_DISTRIBUTION"
    INCOMPLETE_POSITIONS = "INCOMPLETE_POSITIONS"

    # Completion guards
    ROUND_NOT_ELIMINATED = "ROUND_NOT_ELIMINATED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"

    # Creation guards
    DUPLICATE_ROUND_NUMBER = "DUPLICATE_ROUND_NUMBER"
    ROUND_ALREADY_ACTIVE = "ROUND_ALREADY_ACTIVE"

    # Store errors
    TRANSIENT_IO = "TRANSIENT_IO"


class SessionError(Exception):
    """Base exception for round session errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        recoverable: Whether the error is recoverable
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class RoundNotFoundError(SessionError):
    """Raised when a round is not found."""

    def __init__(self, round_id: int):
        super().__init__(
            code=ErrorCode.ROUND_NOT_FOUND,
            message=f"Round not found: {round_id}",
            details={"roundId": round_id},
            recoverable=False,
        )


class PlayerNotSeatedError(SessionError):
    """Raised when an operation names a player who is not seated in the round."""

    def __init__(self, round_id: int, player_id: int):
        super().__init__(
            code=ErrorCode.PLAYER_NOT_SEATED,
            message=f"Player {player_id} is not seated in round {round_id}",
            details={"roundId": round_id, "playerId": player_id},
        )


class InvalidTransitionError(SessionError):
    """Raised when a timer/lifecycle operation is attempted from the wrong state."""

    def __init__(
        self,
        message: str = "Invalid state transition",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=message,
            details=details,
        )


class RebuyNotAllowedError(InvalidTransitionError):
    """Raised when a rebuy is requested outside the rebuy rules."""

    def __init__(self, player_id: int, reason: str):
        super().__init__(
            message=f"Rebuy not allowed for player {player_id}: {reason}",
            details={"playerId": player_id, "reason": reason},
        )
        self.code = ErrorCode.REBUY_NOT_ALLOWED.value


class MissingEliminatorError(SessionError):
    """Raised when a knockout elimination has no bounty recipient."""

    def __init__(self, player_id: int):
        super().__init__(
            code=ErrorCode.MISSING_ELIMINATOR,
            message="Select who eliminated this player",
            details={"playerId": player_id},
        )


class ImbalancedDistributionError(SessionError):
    """Raised when prize totals do not reconcile with the net pool."""

    def __init__(self, distributed: Any, net_pool: Any, difference: Any):
        super().__init__(
            code=ErrorCode.IMBALANCED_DISTRIBUTION,
            message=(
                f"Prize distribution does not balance: distributed {distributed}, "
                f"net pool {net_pool}, difference {difference}"
            ),
            details={
                "distributed": str(distributed),
                "netPool": str(net_pool),
                "difference": str(difference),
            },
        )


class IncompletePositionsError(SessionError):
    """Raised when prizes are requested before the paid positions are known."""

    def __init__(self, missing_positions: list[int]):
        super().__init__(
            code=ErrorCode.INCOMPLETE_POSITIONS,
            message=f"Positions not yet determined: {missing_positions}",
            details={"missingPositions": missing_positions},
        )


class RoundNotEliminatedError(SessionError):
    """Raised when completing a round while seated players still lack a position."""

    def __init__(self, round_id: int, unplaced_player_ids: list[int]):
        super().__init__(
            code=ErrorCode.ROUND_NOT_ELIMINATED,
            message=(
                f"{len(unplaced_player_ids)} players still have no position. "
                "Confirm early finish to complete anyway."
            ),
            details={"roundId": round_id, "unplacedPlayerIds": unplaced_player_ids},
        )


class AlreadyCompletedError(SessionError):
    """Raised when completing a round that is already completed."""

    def __init__(self, round_id: int):
        super().__init__(
            code=ErrorCode.ALREADY_COMPLETED,
            message=f"Round {round_id} is already completed",
            details={"roundId": round_id},
        )


class DuplicateRoundNumberError(SessionError):
    """Raised when a round number is already used in the season."""

    def __init__(self, round_number: int):
        super().__init__(
            code=ErrorCode.DUPLICATE_ROUND_NUMBER,
            message=f"Round {round_number} already exists",
            details={"roundNumber": round_number},
        )


class RoundAlreadyActiveError(SessionError):
    """Raised when another round already has status active."""

    def __init__(self, active_round_id: int):
        super().__init__(
            code=ErrorCode.ROUND_ALREADY_ACTIVE,
            message="Another round is already active",
            details={"activeRoundId": active_round_id},
        )


class TransientIOError(SessionError):
    """Raised when the external store is unavailable.

    Reads are safe to retry. Mutations must not be retried blindly.
    """

    def __init__(self, operation: str, cause: str | None = None):
        super().__init__(
            code=ErrorCode.TRANSIENT_IO,
            message=f"Store unavailable during {operation}, please retry",
            details={"operation": operation, "cause": cause},
        )
