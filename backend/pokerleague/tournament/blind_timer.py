"""
Server-Authoritative Blind Level Timer.

라운드당 하나의 권위 있는 시계. 관리자 1명과 다수의 관전자가 실시간 채널 없이
같은 남은 시간을 보도록 수렴시킨다.

핵심 설계:
─────────────────────────────────────────────────────────────────────────────────

1. 스냅샷 기반 도출 (Drift-free derivation):
   - 저장 필드: current_level, is_paused, timer_started_at, time_remaining_seconds
   - 표시 값 = time_remaining_seconds - floor((now - timer_started_at) / 1000ms)
   - 어떤 클라이언트도 자기 카운트다운을 1틱 이상 신뢰하지 않음

2. 단일 작성자:
   - start / pause / level 변경 / 경계 자동 진행은 관리자 프로세스만 저장
   - 관전자는 view()로 같은 값을 계산하되 절대 저장하지 않음

3. 경계 처리:
   - 0초 도달 + 다음 레벨 존재 -> advance_level(+1) 규칙으로 자동 진행
   - 경계 시각을 기준으로 진행하므로 폴링 지연이 누적되지 않음
   - 마지막 레벨이면 0에서 멈춤 (라운드 자동 종료 없음)

─────────────────────────────────────────────────────────────────────────────────
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pokerleague.logging_config import get_logger
from pokerleague.utils.errors import InvalidTransitionError

from .models import Round, RoundStatus, TournamentSettings

logger = get_logger(__name__)

# 한 번의 tick에서 따라잡을 수 있는 최대 레벨 수
MAX_CATCH_UP_LEVELS = 1000

_ONE_MS = timedelta(milliseconds=1)


def elapsed_ms(started_at: datetime, now: datetime) -> int:
    """Milliseconds since started_at, clamped to >= 0."""
    return max(0, (now - started_at) // _ONE_MS)


def displayed_remaining(round_: Round, now: datetime) -> int:
    """
    The client synchronization contract.

    paused (or never started) -> time_remaining_seconds
    running -> max(0, time_remaining_seconds - floor(elapsed_ms / 1000))
    """
    if round_.is_paused or round_.timer_started_at is None:
        return round_.time_remaining_seconds
    elapsed_seconds = elapsed_ms(round_.timer_started_at, now) // 1000
    return max(0, round_.time_remaining_seconds - elapsed_seconds)


@dataclass(frozen=True)
class LevelTransition:
    """Result of a level change request."""

    occurred: bool
    from_level: int
    to_level: int
    is_break: bool = False
    at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "occurred": self.occurred,
            "from_level": self.from_level,
            "to_level": self.to_level,
            "is_break": self.is_break,
            "at": self.at.isoformat() if self.at else None,
        }


@dataclass(frozen=True)
class TimerView:
    """Display state derived by any viewer (never persisted)."""

    round_id: Optional[int]
    level_index: int
    level_label: Optional[str]
    next_level_label: Optional[str]
    remaining_seconds: int
    is_break: bool
    is_paused: bool
    is_started: bool
    pending_advance: bool = False  # 저장된 레벨보다 앞서 있음 (관리자 sync 대기)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "level_index": self.level_index,
            "level_label": self.level_label,
            "next_level_label": self.next_level_label,
            "remaining_seconds": self.remaining_seconds,
            "is_break": self.is_break,
            "is_paused": self.is_paused,
            "is_started": self.is_started,
            "pending_advance": self.pending_advance,
        }


class RoundTimer:
    """Blind level timer operations over an immutable Round snapshot.

    Every method returns a new Round; persisting it is the caller's job.

    사용 예:
    ```python
    timer = RoundTimer(settings)
    round_ = timer.start(round_, now)
    round_ = timer.toggle_pause(round_, now)
    round_, transition = timer.advance_level(round_, +1, now)
    ```
    """

    def __init__(self, settings: TournamentSettings):
        self.settings = settings

    @property
    def last_level(self) -> int:
        return max(0, self.settings.level_count - 1)

    def _require_active(self, round_: Round, operation: str) -> None:
        if round_.status != RoundStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot {operation}: round is {round_.status.value}",
                details={"roundId": round_.id, "status": round_.status.value},
            )

    # ─────────────────────────────────────────────────────────────────────────────
    # 관리자 조작
    # ─────────────────────────────────────────────────────────────────────────────

    def start(self, round_: Round, now: datetime) -> Round:
        """Start the clock at level 0."""
        self._require_active(round_, "start timer")
        if round_.is_started:
            raise InvalidTransitionError(
                "Round timer already started",
                details={"roundId": round_.id},
            )

        return round_.touch(
            is_started=True,
            current_level=0,
            time_remaining_seconds=self.settings.level_duration_seconds(0),
            timer_started_at=now,
            is_paused=False,
        )

    def set_paused(self, round_: Round, paused: bool, now: datetime) -> Round:
        """Pause (freezing the displayed remaining) or resume."""
        self._require_active(round_, "pause timer")
        if not round_.is_started:
            raise InvalidTransitionError(
                "Round timer has not started",
                details={"roundId": round_.id},
            )
        if paused == round_.is_paused:
            return round_

        if paused:
            return round_.touch(
                is_paused=True,
                time_remaining_seconds=displayed_remaining(round_, now),
                timer_started_at=None,
            )
        return round_.touch(is_paused=False, timer_started_at=now)

    def toggle_pause(self, round_: Round, now: datetime) -> Round:
        return self.set_paused(round_, not round_.is_paused, now)

    def advance_level(
        self,
        round_: Round,
        direction: int,
        now: datetime,
    ) -> Tuple[Round, LevelTransition]:
        """
        Move one level up (+1) or down (-1), clamped to the ladder.

        Returns the transition; occurred=False when already at the edge so
        callers can skip re-firing level-change side effects.
        """
        if direction not in (1, -1):
            raise ValueError("direction must be +1 or -1")
        self._require_active(round_, "change level")

        current = round_.current_level
        target = min(max(current + direction, 0), self.last_level)
        if target == current:
            return round_, LevelTransition(
                occurred=False,
                from_level=current,
                to_level=current,
                is_break=self.settings.is_break_level(current),
            )

        updated = round_.touch(
            current_level=target,
            time_remaining_seconds=self.settings.level_duration_seconds(target),
            timer_started_at=now if round_.is_running else None,
        )
        transition = LevelTransition(
            occurred=True,
            from_level=current,
            to_level=target,
            is_break=self.settings.is_break_level(target),
            at=now,
        )
        return updated, transition

    def set_level(
        self,
        round_: Round,
        level: int,
        remaining_seconds: int,
        timer_started_at: Optional[datetime] = None,
    ) -> Round:
        """Write a raw timer snapshot (external SetLevel operation)."""
        self._require_active(round_, "set level")
        if not 0 <= level <= self.last_level:
            raise InvalidTransitionError(
                f"Level {level} outside blind ladder",
                details={"level": level, "lastLevel": self.last_level},
            )
        if remaining_seconds < 0:
            raise InvalidTransitionError(
                "remaining_seconds must be >= 0",
                details={"remainingSeconds": remaining_seconds},
            )

        return round_.touch(
            current_level=level,
            time_remaining_seconds=remaining_seconds,
            timer_started_at=None if round_.is_paused else timer_started_at,
        )

    # ─────────────────────────────────────────────────────────────────────────────
    # 경계 처리 (관리자 sync / 관전자 view 공용)
    # ─────────────────────────────────────────────────────────────────────────────

    def tick(self, round_: Round, now: datetime) -> Tuple[Round, List[LevelTransition]]:
        """
        Apply every level boundary crossed up to now.

        Each crossing uses the advance_level(+1) rule evaluated at the exact
        boundary instant. At the last level the display clamps at 0 and the
        snapshot is left untouched.
        """
        transitions: List[LevelTransition] = []
        current = round_

        for _ in range(MAX_CATCH_UP_LEVELS):
            if not current.is_running or current.status != RoundStatus.ACTIVE:
                break
            if displayed_remaining(current, now) > 0:
                break
            if current.current_level >= self.last_level:
                break

            boundary_at = current.timer_started_at + timedelta(
                seconds=current.time_remaining_seconds
            )
            current, transition = self.advance_level(current, +1, boundary_at)
            if not transition.occurred:
                break
            transitions.append(transition)

        return current, transitions

    def view(self, round_: Round, now: datetime) -> TimerView:
        """Side-effect-free display derivation for any viewer."""
        projected, transitions = self.tick(round_, now)
        level = self.settings.get_level(projected.current_level)
        next_level = self.settings.get_level(projected.current_level + 1)

        return TimerView(
            round_id=round_.id,
            level_index=projected.current_level,
            level_label=level.label if level else None,
            next_level_label=next_level.label if next_level else None,
            remaining_seconds=displayed_remaining(projected, now),
            is_break=level.is_break if level else False,
            is_paused=projected.is_paused,
            is_started=projected.is_started,
            pending_advance=bool(transitions),
        )


class LevelChangeMarker:
    """Remembers the last level whose side effects (sound, flash) fired.

    The zero-second boundary can be observed on several polls, so call
    sites check should_fire() before re-triggering presentation effects.
    """

    def __init__(self, last_triggered_level: Optional[int] = None):
        self.last_triggered_level = last_triggered_level

    def should_fire(self, transition: LevelTransition) -> bool:
        if not transition.occurred:
            return False
        if transition.to_level == self.last_triggered_level:
            return False
        self.last_triggered_level = transition.to_level
        return True

    def reset(self) -> None:
        self.last_triggered_level = None


# 관리자 sync 콜백 타입 (round_id, now) -> 발생한 전이 목록
SyncHandler = Callable[[int, datetime], Awaitable[List[LevelTransition]]]


@dataclass
class ClockMetrics:
    """Admin clock loop counters."""

    total_syncs: int = 0
    total_transitions: int = 0
    failed_syncs: int = 0
    max_drift_ms: float = 0.0


class AdminClock:
    """Admin-side loop that persists level boundaries as they pass.

    Only the admin-driving process runs this; observers just poll and call
    RoundTimer.view().

    사용 예:
    ```python
    clock = AdminClock(engine.sync_timer, round_id, now_fn=utcnow)
    await clock.start()
    ...
    await clock.stop()
    ```
    """

    def __init__(
        self,
        sync: SyncHandler,
        round_id: int,
        now_fn: Callable[[], datetime],
        interval_seconds: float = 1.0,
    ):
        self._sync = sync
        self.round_id = round_id
        self._now = now_fn
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.metrics = ClockMetrics()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(
            self._loop(),
            name=f"admin_clock_{self.round_id}",
        )
        logger.info("admin_clock_started", round_id=self.round_id)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("admin_clock_stopped", round_id=self.round_id)

    async def run_once(self) -> List[LevelTransition]:
        transitions = await self._sync(self.round_id, self._now())
        self.metrics.total_syncs += 1
        self.metrics.total_transitions += len(transitions)
        return transitions

    async def _loop(self) -> None:
        # monotonic 기준 목표 시각으로 슬립하여 누적 드리프트 방지
        next_target = time.monotonic()
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.metrics.failed_syncs += 1
                logger.exception("admin_clock_sync_failed", round_id=self.round_id)

            next_target += self.interval_seconds
            delay = next_target - time.monotonic()
            if delay < 0:
                self.metrics.max_drift_ms = max(self.metrics.max_drift_ms, -delay * 1000)
                next_target = time.monotonic()
                delay = 0
            await asyncio.sleep(delay)
