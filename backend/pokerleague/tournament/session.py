"""
Tournament Session Engine.

라운드 하나의 생명주기를 타이머 + 탈락 추적 + 상금 계산 + 순위로 조합.

상태 머신:
    Scheduled -> Active(NotStarted) -> Active(Running) <-> Active(Paused) -> Completed

원칙:
─────────────────────────────────────────────────────────────────────────────────

1. 단일 작성자:
   - 모든 상태 변경은 라운드 락 안에서 "읽기 -> 검증 -> 쓰기"
   - 관전자는 get_* 조회만 수행 (절대 저장하지 않음)

2. 재시도 정책:
   - 조회는 TransientIOError 시 tenacity로 재시도
   - 상태 변경은 자동 재시도하지 않음 (탈락은 idempotency key로 보호)

3. 라운드 완료:
   - 결과 행 전체 + 상태 변경을 하나의 원자적 쓰기로 저장
   - 활성 인원이 0이 되는 순간 완료 훅을 정확히 한 번 호출

─────────────────────────────────────────────────────────────────────────────────
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pokerleague.config import Settings, get_settings
from pokerleague.logging_config import get_logger, round_context
from pokerleague.utils.errors import (
    AlreadyCompletedError,
    DuplicateRoundNumberError,
    InvalidTransitionError,
    PlayerNotSeatedError,
    RoundAlreadyActiveError,
    RoundNotEliminatedError,
    RoundNotFoundError,
    TransientIOError,
)

from .blind_timer import LevelTransition, RoundTimer, TimerView
from .distributed_lock import LocalLockManager, LockType, RoundLockManager
from .elimination import EliminationOutcome, EliminationState, EliminationTracker
from .models import (
    Number,
    ResultEntry,
    Round,
    RoundResult,
    RoundStatus,
    RoundType,
    SeatedPlayer,
    TournamentSettings,
    to_decimal,
    utcnow,
)
from .ranking import RankingEngine, RankingSnapshot, SeasonPrizePool
from .scoring import ScoringTable
from .settlement import PayoutSheet, PrizeCalculator
from .store import RoundStore
from .table_draw import TableAssignment, draw_tables

logger = get_logger(__name__)

# 활성 인원 0 도달 시 호출 (라운드, 자동 계산된 지급표)
RoundFinishedCallback = Callable[[Round, PayoutSheet], Awaitable[None]]


@dataclass(frozen=True)
class ObserverSnapshot:
    """Everything a polling viewer re-pulls on each interval."""

    round: Round
    players: List[SeatedPlayer]
    timer: TimerView

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round.to_dict(),
            "players": [p.to_dict() for p in self.players],
            "timer": self.timer.to_dict(),
        }


class TournamentSessionEngine:
    """
    라운드 세션 엔진.

    사용 예:
    ```python
    engine = TournamentSessionEngine(store, settings, scoring)
    round_ = await engine.create_round(1, seated_player_ids=[1, 2, 3])
    await engine.start_round(round_.id)
    await engine.eliminate(round_.id, 3)
    results = await engine.complete_round(round_.id)
    ```
    """

    def __init__(
        self,
        store: RoundStore,
        settings: TournamentSettings,
        scoring: ScoringTable,
        locks: Optional[RoundLockManager] = None,
        app_settings: Optional[Settings] = None,
        on_round_finished: Optional[RoundFinishedCallback] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.scoring = scoring
        self.app_settings = app_settings or get_settings()
        self.locks = locks or LocalLockManager(
            default_lock_timeout_ms=self.app_settings.round_lock_timeout_ms,
            default_acquire_timeout_ms=self.app_settings.round_lock_acquire_timeout_ms,
        )
        self.on_round_finished = on_round_finished
        self._clock = clock

        self.timer = RoundTimer(settings)
        self.calculator = PrizeCalculator(settings)
        self.ranking = RankingEngine(settings)

    # =========================================================================
    # Internals
    # =========================================================================

    def _now(self, now: Optional[datetime]) -> datetime:
        return now or self._clock()

    async def _read(self, operation: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Run a read-only store call, retrying TransientIOError."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.app_settings.store_read_attempts),
            wait=wait_exponential(
                multiplier=self.app_settings.store_read_wait_seconds,
                max=self.app_settings.store_read_wait_seconds * 8,
            ),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=lambda state: logger.warning(
                "store_read_retry",
                operation=operation,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await func(*args)
        return result

    async def _load_round(self, round_id: int) -> Round:
        round_ = await self.store.get_round(round_id)
        if round_ is None:
            raise RoundNotFoundError(round_id)
        return round_

    async def _load_state(self, round_: Round) -> EliminationState:
        state = await self.store.load_elimination_state(round_.id)
        if state is None:
            state = EliminationState.seat(round_.id, round_.seated_player_ids)
        return state

    @asynccontextmanager
    async def _round_operation(self, round_id: int, operation: str) -> AsyncIterator[None]:
        """Per-round lock with round_id bound on every log line."""
        with round_context(round_id, operation=operation):
            try:
                async with self.locks.lock(LockType.ROUND, round_id):
                    yield
            except InvalidTransitionError as exc:
                logger.warning("transition_rejected", error=exc.message)
                raise

    def _with_break_deadline(self, round_: Round, transitions: Sequence[LevelTransition]) -> Round:
        """Reaching a break level closes rebuys."""
        if round_.rebuy_deadline_passed:
            return round_
        if any(t.occurred and t.is_break for t in transitions):
            logger.info("rebuy_deadline_reached", round_id=round_.id, level=round_.current_level)
            return round_.touch(rebuy_deadline_passed=True)
        return round_

    async def _season_pot(self) -> Decimal:
        pool = await self.get_season_prize_pool()
        return pool.final_table_pot

    async def _build_sheet(
        self,
        round_: Round,
        state: EliminationState,
        dealer_amount: Number = 0,
    ) -> PayoutSheet:
        season_pot = await self._season_pot() if round_.is_final_table else Decimal("0")
        return self.calculator.build_sheet(round_, state, season_pot, dealer_amount)

    # =========================================================================
    # Round lifecycle
    # =========================================================================

    async def create_round(
        self,
        round_number: int,
        round_type: RoundType = RoundType.REGULAR,
        buy_in_value: Optional[Number] = None,
        rebuy_value: Optional[Number] = None,
        knockout_value: Optional[Number] = None,
        seated_player_ids: Sequence[int] = (),
    ) -> Round:
        """
        새 라운드 생성 (status=active).

        Raises:
            DuplicateRoundNumberError: round number already used
            RoundAlreadyActiveError: another round is active
        """
        async with self.locks.lock(LockType.SEASON):
            if await self.store.find_round_by_number(round_number) is not None:
                raise DuplicateRoundNumberError(round_number)

            active = await self.store.get_active_round()
            if active is not None:
                raise RoundAlreadyActiveError(active.id)

            round_ = Round(
                id=None,
                round_number=round_number,
                round_type=RoundType(round_type),
                buy_in_value=to_decimal(buy_in_value) if buy_in_value is not None else None,
                rebuy_value=to_decimal(rebuy_value) if rebuy_value is not None else None,
                knockout_value=(
                    to_decimal(knockout_value) if knockout_value is not None else None
                ),
                status=RoundStatus.ACTIVE,
                seated_player_ids=tuple(seated_player_ids),
            )
            state = EliminationState.seat(None, round_.seated_player_ids)
            stored = await self.store.insert_round(round_, state)

        logger.info(
            "round_created",
            round_id=stored.id,
            round_number=round_number,
            round_type=stored.round_type.value,
            seated=stored.seated_count,
        )
        return stored

    async def start_round(self, round_id: int, now: Optional[datetime] = None) -> Round:
        """Start the clock; a scheduled round is activated first."""
        now = self._now(now)
        async with self._round_operation(round_id, "start_round"):
            round_ = await self._load_round(round_id)

            if round_.status == RoundStatus.SCHEDULED:
                active = await self.store.get_active_round()
                if active is not None and active.id != round_id:
                    raise RoundAlreadyActiveError(active.id)
                round_ = round_.touch(status=RoundStatus.ACTIVE)

            round_ = self.timer.start(round_, now)
            if self.settings.is_break_level(0):
                round_ = round_.touch(rebuy_deadline_passed=True)
            await self.store.save_round(round_)

        logger.info("round_started", round_id=round_id, level_seconds=round_.time_remaining_seconds)
        return round_

    # =========================================================================
    # Timer
    # =========================================================================

    async def set_paused(
        self,
        round_id: int,
        paused: bool,
        now: Optional[datetime] = None,
    ) -> Round:
        return await self._write_pause(round_id, paused, now, "set_paused")

    async def toggle_pause(self, round_id: int, now: Optional[datetime] = None) -> Round:
        """Flip is_paused; the current value is read under the round lock."""
        return await self._write_pause(round_id, None, now, "toggle_pause")

    async def _write_pause(
        self,
        round_id: int,
        paused: Optional[bool],
        now: Optional[datetime],
        operation: str,
    ) -> Round:
        now = self._now(now)
        async with self._round_operation(round_id, operation):
            round_ = await self._load_round(round_id)
            target = not round_.is_paused if paused is None else paused
            updated = self.timer.set_paused(round_, target, now)
            if updated is not round_:
                await self.store.save_round(updated)

        logger.info(
            "round_paused" if target else "round_resumed",
            round_id=round_id,
            remaining=updated.time_remaining_seconds,
        )
        return updated

    async def set_level(
        self,
        round_id: int,
        level: int,
        remaining_seconds: int,
        timer_started_at: Optional[datetime] = None,
    ) -> Round:
        """Raw timer snapshot write."""
        async with self._round_operation(round_id, "set_level"):
            round_ = await self._load_round(round_id)
            updated = self.timer.set_level(round_, level, remaining_seconds, timer_started_at)
            if self.settings.is_break_level(level) and not updated.rebuy_deadline_passed:
                updated = updated.touch(rebuy_deadline_passed=True)
            await self.store.save_round(updated)

        logger.info("level_set", round_id=round_id, level=level, remaining=remaining_seconds)
        return updated

    async def advance_level(
        self,
        round_id: int,
        direction: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Round, LevelTransition]:
        now = self._now(now)
        async with self._round_operation(round_id, "advance_level"):
            round_ = await self._load_round(round_id)
            updated, transition = self.timer.advance_level(round_, direction, now)
            if transition.occurred:
                updated = self._with_break_deadline(updated, [transition])
                await self.store.save_round(updated)

        if transition.occurred:
            logger.info(
                "level_changed",
                round_id=round_id,
                from_level=transition.from_level,
                to_level=transition.to_level,
                is_break=transition.is_break,
            )
        return updated, transition

    async def sync_timer(
        self,
        round_id: int,
        now: Optional[datetime] = None,
    ) -> List[LevelTransition]:
        """
        Admin-side boundary sync: persist every level boundary already crossed.

        Only the admin-driving process calls this.
        """
        now = self._now(now)
        async with self._round_operation(round_id, "sync_timer"):
            round_ = await self._load_round(round_id)
            updated, transitions = self.timer.tick(round_, now)
            if transitions:
                updated = self._with_break_deadline(updated, transitions)
                await self.store.save_round(updated)

        for transition in transitions:
            logger.info(
                "level_auto_advanced",
                round_id=round_id,
                from_level=transition.from_level,
                to_level=transition.to_level,
                is_break=transition.is_break,
            )
        return transitions

    async def get_timer_view(self, round_id: int, now: Optional[datetime] = None) -> TimerView:
        """Side-effect-free display state for any viewer."""
        round_ = await self._read("get_round", self._load_round, round_id)
        return self.timer.view(round_, self._now(now))

    # =========================================================================
    # Elimination
    # =========================================================================

    async def eliminate(
        self,
        round_id: int,
        player_id: int,
        eliminator_id: Optional[int] = None,
        bounty: Optional[Number] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EliminationOutcome:
        """
        Eliminate a player and checkpoint the full elimination state.

        When the active count reaches zero the timer is paused and the
        completion hook fires once.
        """
        now = self._now(now)
        fire_hook = False
        async with self._round_operation(round_id, "eliminate"):
            round_ = await self._load_round(round_id)
            state = await self._load_state(round_)
            tracker = EliminationTracker(round_, state, self.settings)

            outcome = tracker.eliminate(
                player_id,
                eliminator_id=eliminator_id,
                bounty_amount=to_decimal(bounty) if bounty is not None else None,
                now=now,
                idempotency_key=idempotency_key,
            )
            if outcome.duplicate:
                logger.info("elimination_replayed", round_id=round_id, player_id=player_id)
                return outcome

            if outcome.all_eliminated and not state.completion_pending:
                state.completion_pending = True
                fire_hook = True
                if round_.is_running:
                    round_ = self.timer.set_paused(round_, True, now)

            await self.store.save_session(round_, state)

        if fire_hook:
            logger.info("round_all_eliminated", round_id=round_id)
            await self._notify_finished(round_, state)
        return outcome

    async def _notify_finished(self, round_: Round, state: EliminationState) -> None:
        if self.on_round_finished is None:
            return
        sheet = await self._build_sheet(round_, state)
        await self.on_round_finished(round_, sheet)

    async def rebuy(self, round_id: int, player_id: int) -> SeatedPlayer:
        async with self._round_operation(round_id, "rebuy"):
            round_ = await self._load_round(round_id)
            state = await self._load_state(round_)
            player = EliminationTracker(round_, state, self.settings).rebuy(player_id)
            await self.store.save_session(round_, state)
        return player

    async def restore(self, round_id: int, player_id: int) -> List[int]:
        """Undo an elimination; returns the ids made active again."""
        async with self._round_operation(round_id, "restore"):
            round_ = await self._load_round(round_id)
            state = await self._load_state(round_)
            restored = EliminationTracker(round_, state, self.settings).restore(player_id)
            await self.store.save_session(round_, state)
        return restored

    async def remove_player(self, round_id: int, player_id: int) -> Round:
        """Drop a no-show from the round."""
        async with self._round_operation(round_id, "remove_player"):
            round_ = await self._load_round(round_id)
            state = await self._load_state(round_)
            EliminationTracker(round_, state, self.settings).remove(player_id)
            round_ = round_.touch(
                seated_player_ids=tuple(p for p in round_.seated_player_ids if p != player_id)
            )
            await self.store.save_session(round_, state)
        return round_

    async def mark_rebuy_deadline(self, round_id: int) -> Round:
        async with self._round_operation(round_id, "mark_rebuy_deadline"):
            round_ = await self._load_round(round_id)
            if round_.status == RoundStatus.COMPLETED:
                raise InvalidTransitionError(
                    "Round is already completed",
                    details={"roundId": round_id},
                )
            if not round_.rebuy_deadline_passed:
                round_ = round_.touch(rebuy_deadline_passed=True)
                await self.store.save_round(round_)

        logger.info("rebuy_deadline_marked", round_id=round_id)
        return round_

    async def get_elimination_state(self, round_id: int) -> List[SeatedPlayer]:
        """Read-only snapshot for polling observers."""
        round_ = await self._read("get_round", self._load_round, round_id)
        state = await self._read("load_elimination_state", self._load_state, round_)
        return state.snapshot()

    async def get_observer_snapshot(
        self,
        round_id: int,
        now: Optional[datetime] = None,
    ) -> ObserverSnapshot:
        round_ = await self._read("get_round", self._load_round, round_id)
        state = await self._read("load_elimination_state", self._load_state, round_)
        return ObserverSnapshot(
            round=round_,
            players=state.snapshot(),
            timer=self.timer.view(round_, self._now(now)),
        )

    # =========================================================================
    # Prizes / completion
    # =========================================================================

    async def preview_payouts(self, round_id: int, dealer_amount: Number = 0) -> PayoutSheet:
        """Editable payout proposal from the current finishing order."""
        round_ = await self._read("get_round", self._load_round, round_id)
        state = await self._read("load_elimination_state", self._load_state, round_)
        return await self._build_sheet(round_, state, dealer_amount)

    def _entries_from_state(
        self,
        state: EliminationState,
        sheet: PayoutSheet,
    ) -> List[ResultEntry]:
        entries = []
        for player in state.players.values():
            if player.position is None:
                continue
            entries.append(
                ResultEntry(
                    player_id=player.player_id,
                    position=player.position,
                    rebuys=player.rebuys,
                    knockout_earnings=player.knockout_earnings,
                    prize=sheet.prize_for(player.position),
                )
            )
        return sorted(entries, key=lambda e: e.position)

    @staticmethod
    def _seated_ids(round_: Round, state: EliminationState) -> set:
        return set(state.players) or set(round_.seated_player_ids)

    async def _confirmed_sheet(
        self,
        round_: Round,
        state: EliminationState,
        entries: Sequence[ResultEntry],
        dealer_amount: Number,
    ) -> PayoutSheet:
        """Payout sheet carrying the manually confirmed prizes."""
        position_map = {e.position: e.player_id for e in entries}
        seated_count = len(self._seated_ids(round_, state))
        if round_.is_final_table:
            sheet = self.calculator.final_table_payouts(
                round_,
                await self._season_pot(),
                position_map,
                seated_count,
            )
        else:
            # 확정 결과의 리바이 수 우선, 미배치 플레이어는 추적 상태 기준
            placed = set(position_map.values())
            rebuys = sum(e.rebuys for e in entries) + sum(
                p.rebuys for p in state.players.values() if p.player_id not in placed
            )
            sheet = self.calculator.regular_payouts(round_, seated_count, rebuys, position_map)

        sheet.lines = []
        for entry in entries:
            if entry.prize > 0:
                sheet.set_prize(entry.position, entry.prize)
        sheet.assign_players(position_map)
        sheet.set_dealer(dealer_amount)
        return sheet

    def _validate_entries(
        self,
        round_: Round,
        state: EliminationState,
        entries: Sequence[ResultEntry],
    ) -> None:
        seated = self._seated_ids(round_, state)
        positions = set()
        players = set()
        for entry in entries:
            if entry.player_id not in seated:
                raise PlayerNotSeatedError(round_.id, entry.player_id)
            if entry.player_id in players:
                raise InvalidTransitionError(
                    f"Player {entry.player_id} appears twice in results",
                    details={"playerId": entry.player_id},
                )
            if entry.position in positions or not 1 <= entry.position <= len(seated):
                raise InvalidTransitionError(
                    f"Invalid or duplicate position {entry.position}",
                    details={"position": entry.position, "seated": len(seated)},
                )
            players.add(entry.player_id)
            positions.add(entry.position)

    async def complete_round(
        self,
        round_id: int,
        results: Optional[Sequence[ResultEntry]] = None,
        dealer_amount: Number = 0,
        confirm_early_finish: bool = False,
        now: Optional[datetime] = None,
    ) -> List[RoundResult]:
        """
        Terminal operation: write one RoundResult per placed player and flip
        the round to completed, atomically.

        results=None builds the lines from the tracker and the computed
        payout sheet. Explicit results carry manually confirmed prizes.

        Raises:
            AlreadyCompletedError: round already completed
            RoundNotEliminatedError: unplaced players without confirm_early_finish
            ImbalancedDistributionError: prizes + dealer do not reconcile
            TransientIOError: durable write failed (round stays active)
        """
        now = self._now(now)
        async with self._round_operation(round_id, "complete_round"):
            round_ = await self._load_round(round_id)
            if round_.status == RoundStatus.COMPLETED:
                raise AlreadyCompletedError(round_id)
            if round_.status != RoundStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Cannot complete a {round_.status.value} round",
                    details={"roundId": round_id, "status": round_.status.value},
                )

            state = await self._load_state(round_)
            if results is None:
                unplaced = state.unplaced_player_ids()
                if unplaced and not confirm_early_finish:
                    raise RoundNotEliminatedError(round_id, unplaced)
                sheet = await self._build_sheet(round_, state, dealer_amount)
                entries = self._entries_from_state(state, sheet)
            else:
                entries = list(results)
                self._validate_entries(round_, state, entries)
                placed = {e.player_id for e in entries}
                unplaced = sorted(p for p in self._seated_ids(round_, state) if p not in placed)
                if unplaced and not confirm_early_finish:
                    raise RoundNotEliminatedError(round_id, unplaced)
                sheet = await self._confirmed_sheet(round_, state, entries, dealer_amount)

            # 조기 종료 + 상금 미입력은 잔액 검증 생략
            if not (confirm_early_finish and sheet.distributed == 0):
                sheet.require_balanced()

            rows = [
                RoundResult(
                    round_id=round_id,
                    player_id=entry.player_id,
                    position=entry.position,
                    points=self.scoring.points_for(entry.position),
                    rebuys=entry.rebuys,
                    knockout_earnings=to_decimal(entry.knockout_earnings),
                    prize=to_decimal(entry.prize),
                )
                for entry in entries
            ]

            if round_.is_running:
                round_ = self.timer.set_paused(round_, True, now)

            try:
                stored = await self.store.complete_round(round_, rows)
            except TransientIOError:
                logger.error("round_completion_failed", round_id=round_id, exc_info=True)
                raise

        logger.info(
            "round_completed",
            round_id=round_id,
            results=len(stored),
            distributed=str(sheet.distributed),
            dealer=str(sheet.dealer_amount),
        )
        return stored

    # =========================================================================
    # Season
    # =========================================================================

    async def _season_history(self) -> Tuple[List[Round], List[RoundResult]]:
        rounds = await self._read("list_rounds", self.store.list_rounds, RoundStatus.COMPLETED)
        results = await self._read("list_results", self.store.list_results, [r.id for r in rounds])
        return rounds, results

    async def get_rankings(self, settings: Optional[TournamentSettings] = None) -> RankingSnapshot:
        rounds, results = await self._season_history()
        engine = RankingEngine(settings) if settings is not None else self.ranking
        return engine.compute(rounds, results)

    async def get_season_prize_pool(self) -> SeasonPrizePool:
        rounds, results = await self._season_history()
        return self.ranking.season_prize_pool(rounds, results)

    async def generate_final_table(self) -> Round:
        """
        Seat the season's top players in a scheduled final-table round.

        Requires every regular round to be completed and no final table yet.
        """
        async with self.locks.lock(LockType.SEASON):
            all_rounds = await self.store.list_rounds()
            if any(r.is_final_table for r in all_rounds):
                raise InvalidTransitionError("Final table already created")

            completed = [
                r for r in all_rounds
                if r.status == RoundStatus.COMPLETED and not r.is_final_table
            ]
            if len(completed) < self.settings.total_rounds:
                raise InvalidTransitionError(
                    f"Complete all {self.settings.total_rounds} rounds before the final table",
                    details={"completed": len(completed), "required": self.settings.total_rounds},
                )

            standings = await self.get_rankings()
            top = [e.player_id for e in standings.top(self.settings.final_table_top_players)]
            if not top:
                raise InvalidTransitionError("No ranked players for the final table")

            round_number = self.settings.total_rounds + 1
            if await self.store.find_round_by_number(round_number) is not None:
                raise DuplicateRoundNumberError(round_number)

            round_ = Round(
                id=None,
                round_number=round_number,
                round_type=RoundType.REGULAR,
                is_final_table=True,
                status=RoundStatus.SCHEDULED,
                seated_player_ids=tuple(top),
            )
            stored = await self.store.insert_round(
                round_,
                EliminationState.seat(None, round_.seated_player_ids),
            )

        logger.info("final_table_generated", round_id=stored.id, players=len(top))
        return stored

    async def replace_final_table_player(
        self,
        round_id: int,
        player_id: int,
        excluded_player_ids: Sequence[int] = (),
    ) -> Round:
        """
        Swap a final-table player (before the start) for the next-best
        standings player not already seated.

        excluded_player_ids lists players who declined earlier.
        """
        standings = await self.get_rankings()

        async with self._round_operation(round_id, "replace_final_table_player"):
            round_ = await self._load_round(round_id)
            if not round_.is_final_table:
                raise InvalidTransitionError("Round is not a final table", details={"roundId": round_id})
            if round_.is_started or round_.status == RoundStatus.COMPLETED:
                raise InvalidTransitionError(
                    "Final table already started",
                    details={"roundId": round_id},
                )
            if player_id not in round_.seated_player_ids:
                raise PlayerNotSeatedError(round_id, player_id)

            skip = set(round_.seated_player_ids) | set(excluded_player_ids) | {player_id}
            replacement = next(
                (e.player_id for e in standings.entries if e.player_id not in skip),
                None,
            )

            seated = [p for p in round_.seated_player_ids if p != player_id]
            if replacement is not None:
                seated.append(replacement)
            round_ = round_.touch(seated_player_ids=tuple(seated))
            await self.store.save_session(round_, EliminationState.seat(round_id, seated))

        logger.info(
            "final_table_player_replaced",
            round_id=round_id,
            removed_player_id=player_id,
            replacement_player_id=replacement,
        )
        return round_

    async def draw_tables(self, round_id: int, seed: Optional[int] = None) -> List[TableAssignment]:
        """Random table assignment for the round's seated players."""
        round_ = await self._read("get_round", self._load_round, round_id)
        return draw_tables(round_.seated_player_ids, is_final_table=round_.is_final_table, seed=seed)


SnapshotHandler = Callable[[ObserverSnapshot], Awaitable[None]]


class RoundObserver:
    """
    Non-admin viewer loop: re-pulls the full round state on a fixed interval.

    Never writes; always prefers the freshest snapshot.
    """

    def __init__(
        self,
        engine: TournamentSessionEngine,
        round_id: int,
        on_snapshot: SnapshotHandler,
        poll_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.round_id = round_id
        self.on_snapshot = on_snapshot
        self.poll_seconds = poll_seconds or engine.app_settings.observer_poll_seconds
        self.last_snapshot: Optional[ObserverSnapshot] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def poll_once(self) -> ObserverSnapshot:
        snapshot = await self.engine.get_observer_snapshot(self.round_id)
        self.last_snapshot = snapshot
        await self.on_snapshot(snapshot)
        return snapshot

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"round_observer_{self.round_id}")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except TransientIOError as exc:
                # 다음 주기에 다시 조회
                logger.warning("observer_poll_failed", round_id=self.round_id, error=exc.message)
            await asyncio.sleep(self.poll_seconds)


async def build_session_engine(
    settings: TournamentSettings,
    scoring: ScoringTable,
    app_settings: Optional[Settings] = None,
    on_round_finished: Optional[RoundFinishedCallback] = None,
) -> TournamentSessionEngine:
    """
    Wire the engine from application settings.

    SQL store on settings.database_url; Redis locks when redis_url is set,
    otherwise in-process locks (single admin process).
    """
    from pokerleague.utils.db import get_session_factory
    from pokerleague.utils.redis_client import init_redis

    from .distributed_lock import RedisLockManager
    from .sql_store import SqlAlchemyRoundStore

    app_settings = app_settings or get_settings()
    store = SqlAlchemyRoundStore(get_session_factory(app_settings))

    locks: RoundLockManager
    if app_settings.redis_url:
        locks = RedisLockManager(
            await init_redis(app_settings),
            default_lock_timeout_ms=app_settings.round_lock_timeout_ms,
            default_acquire_timeout_ms=app_settings.round_lock_acquire_timeout_ms,
        )
    else:
        locks = LocalLockManager(
            default_lock_timeout_ms=app_settings.round_lock_timeout_ms,
            default_acquire_timeout_ms=app_settings.round_lock_acquire_timeout_ms,
        )

    logger.info(
        "session_engine_ready",
        store="sql",
        locks=type(locks).__name__,
        app_env=app_settings.app_env,
    )
    return TournamentSessionEngine(
        store,
        settings,
        scoring,
        locks=locks,
        app_settings=app_settings,
        on_round_finished=on_round_finished,
    )
