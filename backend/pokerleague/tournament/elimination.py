"""
Elimination / Rebuy State Machine.

진행 중인 라운드의 탈락·리바이·복구 기록을 일관된 최종 순위로 변환.

규칙:
- next_position은 착석 인원으로 시작하여 탈락마다 1씩 감소
  (첫 탈락자가 최하위, 마지막 탈락이 1위를 확정)
- 2명 남은 상태의 탈락 = 헤즈업 종료: 탈락자 2위, 생존자 1위, 둘 다 비활성
- 녹아웃 라운드에서 3명 이상 남았다면 탈락시킨 플레이어 지정 필수
- next_position은 항상 활성 인원 수와 같다
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from pokerleague.logging_config import get_logger
from pokerleague.utils.errors import (
    InvalidTransitionError,
    MissingEliminatorError,
    PlayerNotSeatedError,
    RebuyNotAllowedError,
)

from .models import (
    Round,
    RoundStatus,
    RoundType,
    SeatedPlayer,
    TournamentSettings,
    to_decimal,
    utcnow,
)

logger = get_logger(__name__)


@dataclass
class EliminationState:
    """Full per-round elimination snapshot, saved as one unit."""

    round_id: Optional[int]
    players: Dict[int, SeatedPlayer] = field(default_factory=dict)
    next_position: int = 0
    completion_pending: bool = False

    @classmethod
    def seat(cls, round_id: Optional[int], player_ids: Iterable[int]) -> "EliminationState":
        """Initial state: every seated player active with no position."""
        players: Dict[int, SeatedPlayer] = {}
        for player_id in player_ids:
            if player_id in players:
                raise ValueError(f"Player {player_id} seated twice")
            players[player_id] = SeatedPlayer(player_id=player_id)
        return cls(round_id=round_id, players=players, next_position=len(players))

    @property
    def seated_count(self) -> int:
        return len(self.players)

    @property
    def active_players(self) -> List[SeatedPlayer]:
        return [p for p in self.players.values() if p.is_active]

    @property
    def active_count(self) -> int:
        return sum(1 for p in self.players.values() if p.is_active)

    @property
    def total_rebuys(self) -> int:
        return sum(p.rebuys for p in self.players.values())

    @property
    def all_eliminated(self) -> bool:
        return self.seated_count > 0 and self.active_count == 0

    def position_map(self) -> Dict[int, int]:
        """position -> player_id for every placed player."""
        return {
            p.position: p.player_id
            for p in self.players.values()
            if p.position is not None
        }

    def unplaced_player_ids(self) -> List[int]:
        return [p.player_id for p in self.players.values() if p.position is None]

    def snapshot(self) -> List[SeatedPlayer]:
        """Players ordered as seated (read-only copies)."""
        return [SeatedPlayer.from_dict(p.to_dict()) for p in self.players.values()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "next_position": self.next_position,
            "completion_pending": self.completion_pending,
            "players": [p.to_dict() for p in self.players.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EliminationState":
        players = [SeatedPlayer.from_dict(p) for p in data.get("players", [])]
        return cls(
            round_id=data.get("round_id"),
            players={p.player_id: p for p in players},
            next_position=int(data.get("next_position", 0)),
            completion_pending=bool(data.get("completion_pending", False)),
        )


@dataclass(frozen=True)
class EliminationOutcome:
    """Result of one eliminate() call."""

    player_id: int
    position: int
    eliminator_id: Optional[int] = None
    bounty: Decimal = Decimal("0")
    survivor_id: Optional[int] = None  # 헤즈업 종료 시 1위
    all_eliminated: bool = False
    duplicate: bool = False  # 같은 idempotency key 재전송

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "position": self.position,
            "eliminator_id": self.eliminator_id,
            "bounty": str(self.bounty),
            "survivor_id": self.survivor_id,
            "all_eliminated": self.all_eliminated,
            "duplicate": self.duplicate,
        }


class EliminationTracker:
    """Applies elimination actions to an EliminationState in place.

    The tracker validates against the owning Round (type, status, rebuy
    deadline) but never persists; the session engine saves the whole state
    after every successful call.
    """

    def __init__(
        self,
        round_: Round,
        state: EliminationState,
        settings: TournamentSettings,
    ):
        self.round = round_
        self.state = state
        self.settings = settings

    def _require_active_round(self, operation: str) -> None:
        if self.round.status != RoundStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot {operation}: round is {self.round.status.value}",
                details={"roundId": self.round.id, "status": self.round.status.value},
            )

    def _get(self, player_id: int) -> SeatedPlayer:
        player = self.state.players.get(player_id)
        if player is None:
            raise PlayerNotSeatedError(self.round.id, player_id)
        return player

    # =========================================================================
    # Eliminate
    # =========================================================================

    def eliminate(
        self,
        player_id: int,
        eliminator_id: Optional[int] = None,
        bounty_amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
    ) -> EliminationOutcome:
        """Eliminate one player and assign the next finishing position."""
        self._require_active_round("eliminate")
        player = self._get(player_id)

        if not player.is_active:
            if idempotency_key and player.elimination_key == idempotency_key:
                return EliminationOutcome(
                    player_id=player_id,
                    position=player.position or 0,
                    eliminator_id=player.eliminated_by,
                    bounty=player.bounty_awarded,
                    all_eliminated=self.state.all_eliminated,
                    duplicate=True,
                )
            raise InvalidTransitionError(
                f"Player {player_id} is already eliminated",
                details={"playerId": player_id, "position": player.position},
            )

        active = self.state.active_players
        heads_up = len(active) == 2

        if eliminator_id is not None:
            eliminator = self._get(eliminator_id)
            if eliminator_id == player_id or not eliminator.is_active:
                raise InvalidTransitionError(
                    "Eliminator must be another active player",
                    details={"playerId": player_id, "eliminatorId": eliminator_id},
                )
        elif self.round.round_type == RoundType.KNOCKOUT and not heads_up:
            raise MissingEliminatorError(player_id)

        bounty = Decimal("0")
        if self.round.round_type == RoundType.KNOCKOUT:
            bounty = (
                to_decimal(bounty_amount)
                if bounty_amount is not None
                else self.round.bounty_value
            )

        stamp = now or utcnow()

        if heads_up:
            survivor = next(p for p in active if p.player_id != player_id)
            if eliminator_id is not None and eliminator_id != survivor.player_id:
                raise InvalidTransitionError(
                    "Heads-up eliminator can only be the remaining player",
                    details={"playerId": player_id, "eliminatorId": eliminator_id},
                )
            self._mark_out(player, 2, stamp, idempotency_key)
            self._mark_out(survivor, 1, stamp, None)

            # 헤즈업은 탈락시킨 사람 지정이 없어도 생존자에게 바운티 지급
            if bounty > 0:
                self._credit(player, survivor, bounty)
            self.state.next_position = 0

            logger.info(
                "heads_up_finished",
                round_id=self.round.id,
                winner_id=survivor.player_id,
                runner_up_id=player_id,
                bounty=str(bounty),
            )
            return EliminationOutcome(
                player_id=player_id,
                position=2,
                eliminator_id=survivor.player_id if bounty > 0 else eliminator_id,
                bounty=bounty,
                survivor_id=survivor.player_id,
                all_eliminated=True,
            )

        position = self.state.next_position
        self._mark_out(player, position, stamp, idempotency_key)
        self.state.next_position -= 1

        if eliminator_id is not None and bounty > 0:
            self._credit(player, self.state.players[eliminator_id], bounty)

        logger.info(
            "player_eliminated",
            round_id=self.round.id,
            player_id=player_id,
            position=position,
            eliminator_id=eliminator_id,
            bounty=str(bounty),
        )
        return EliminationOutcome(
            player_id=player_id,
            position=position,
            eliminator_id=eliminator_id,
            bounty=bounty,
            all_eliminated=self.state.all_eliminated,
        )

    @staticmethod
    def _mark_out(
        player: SeatedPlayer,
        position: int,
        stamp: datetime,
        key: Optional[str],
    ) -> None:
        player.is_active = False
        player.position = position
        player.eliminated_at = stamp
        player.elimination_key = key

    @staticmethod
    def _credit(eliminated: SeatedPlayer, eliminator: SeatedPlayer, bounty: Decimal) -> None:
        eliminator.knockout_earnings += bounty
        eliminated.eliminated_by = eliminator.player_id
        eliminated.bounty_awarded = bounty

    # =========================================================================
    # Rebuy
    # =========================================================================

    def rebuy(self, player_id: int) -> SeatedPlayer:
        """Re-enter an active player (regular rounds, before the deadline)."""
        self._require_active_round("rebuy")
        player = self._get(player_id)

        if self.round.round_type != RoundType.REGULAR:
            raise RebuyNotAllowedError(player_id, f"{self.round.round_type.value} round")
        if self.round.rebuy_deadline_passed:
            raise RebuyNotAllowedError(player_id, "rebuy deadline passed")
        if not player.is_active:
            raise RebuyNotAllowedError(player_id, "player is eliminated")
        if player.rebuys >= self.settings.max_rebuys_per_round:
            raise RebuyNotAllowedError(
                player_id,
                f"limit of {self.settings.max_rebuys_per_round} rebuys reached",
            )

        player.rebuys += 1
        logger.info(
            "player_rebuy",
            round_id=self.round.id,
            player_id=player_id,
            rebuys=player.rebuys,
        )
        return player

    # =========================================================================
    # Restore / Remove
    # =========================================================================

    def restore(self, player_id: int) -> List[int]:
        """
        Reverse an elimination.

        A heads-up finish (positions 1 and 2) is undone as a pair, and
        restoring anyone once the round is fully placed reopens that pair
        too. Any pending completion is cleared. Bounty
        this player's elimination credited to someone else is taken back;
        earnings the player caused as eliminator stay. Later-eliminated
        players are shifted so positions stay gap-free.

        Returns the ids of players made active again.
        """
        self._require_active_round("restore")
        player = self._get(player_id)
        if player.is_active or player.position is None:
            raise InvalidTransitionError(
                f"Player {player_id} is not eliminated",
                details={"playerId": player_id},
            )

        restored_position = player.position
        reopened = [player]
        if self.state.active_count == 0:
            # 헤즈업으로 1/2위가 이미 정해진 상태: 두 사람도 함께 되돌림
            reopened += [
                p for p in self.state.players.values()
                if p is not player and p.position in (1, 2)
            ]
        for p in reopened:
            self._reactivate(p)
        if restored_position > 2:
            for other in self.state.players.values():
                if other.position is not None and other.position < restored_position:
                    other.position += 1
        self.state.next_position = self.state.active_count
        self.state.completion_pending = False
        restored = [p.player_id for p in reopened]

        logger.info(
            "player_restored",
            round_id=self.round.id,
            player_ids=restored,
            next_position=self.state.next_position,
        )
        return restored

    def _reactivate(self, player: SeatedPlayer) -> None:
        if player.eliminated_by is not None and player.bounty_awarded:
            eliminator = self.state.players.get(player.eliminated_by)
            if eliminator is not None:
                eliminator.knockout_earnings -= player.bounty_awarded
        player.is_active = True
        player.position = None
        player.eliminated_at = None
        player.eliminated_by = None
        player.bounty_awarded = Decimal("0")
        player.elimination_key = None

    def remove(self, player_id: int) -> SeatedPlayer:
        """Drop an active no-show from the seated set (no position)."""
        self._require_active_round("remove player")
        player = self._get(player_id)
        if not player.is_active:
            raise InvalidTransitionError(
                f"Player {player_id} already has a position; restore first",
                details={"playerId": player_id, "position": player.position},
            )
        if any(p.eliminated_by == player_id for p in self.state.players.values()):
            raise InvalidTransitionError(
                f"Player {player_id} has knockout credit and cannot be removed",
                details={"playerId": player_id},
            )

        del self.state.players[player_id]
        # 이미 탈락한 플레이어 순위를 한 칸씩 당김
        for other in self.state.players.values():
            if other.position is not None:
                other.position -= 1
        self.state.next_position -= 1

        logger.info(
            "player_removed",
            round_id=self.round.id,
            player_id=player_id,
            seated_count=self.state.seated_count,
        )
        return player
