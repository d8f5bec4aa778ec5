"""
Round Store Contract.

세션 엔진이 사용하는 저장소 인터페이스 + 단일 프로세스용 메모리 구현.

Round 행과 그 탈락 스냅샷이 유일한 공유 가변 자원이며,
라운드 완료(결과 행 + 상태 변경)는 하나의 원자적 쓰기로 처리되어야 한다.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from pokerleague.utils.errors import AlreadyCompletedError, RoundNotFoundError

from .elimination import EliminationState
from .models import Round, RoundResult, RoundStatus


class RoundStore(ABC):
    """Async persistence contract for rounds, elimination state and results."""

    @abstractmethod
    async def get_round(self, round_id: int) -> Optional[Round]:
        ...

    @abstractmethod
    async def find_round_by_number(self, round_number: int) -> Optional[Round]:
        ...

    @abstractmethod
    async def get_active_round(self) -> Optional[Round]:
        ...

    @abstractmethod
    async def list_rounds(self, status: Optional[RoundStatus] = None) -> List[Round]:
        """Rounds ordered by round number."""

    @abstractmethod
    async def insert_round(self, round_: Round, state: EliminationState) -> Round:
        """Insert a new round with its initial elimination state; assigns the id."""

    @abstractmethod
    async def save_round(self, round_: Round) -> Round:
        ...

    @abstractmethod
    async def load_elimination_state(self, round_id: int) -> Optional[EliminationState]:
        ...

    @abstractmethod
    async def save_session(self, round_: Round, state: EliminationState) -> None:
        """Persist the round row and its full elimination snapshot as one unit."""

    @abstractmethod
    async def complete_round(
        self,
        round_: Round,
        results: Sequence[RoundResult],
    ) -> List[RoundResult]:
        """
        Atomically write every result row and flip status to completed.

        Raises AlreadyCompletedError if the stored round is already completed;
        on any failure the stored round keeps its previous status.
        """

    @abstractmethod
    async def list_results(self, round_ids: Optional[Sequence[int]] = None) -> List[RoundResult]:
        ...

    async def close(self) -> None:
        """Release underlying resources."""


class InMemoryRoundStore(RoundStore):
    """Single-process store (tests, local sessions)."""

    def __init__(self):
        self._rounds: Dict[int, Round] = {}
        self._states: Dict[int, dict] = {}
        self._results: Dict[int, List[RoundResult]] = {}
        self._next_round_id = 1
        self._next_result_id = 1
        self._lock = asyncio.Lock()

    async def get_round(self, round_id: int) -> Optional[Round]:
        return self._rounds.get(round_id)

    async def find_round_by_number(self, round_number: int) -> Optional[Round]:
        for round_ in self._rounds.values():
            if round_.round_number == round_number:
                return round_
        return None

    async def get_active_round(self) -> Optional[Round]:
        for round_ in self._rounds.values():
            if round_.status == RoundStatus.ACTIVE:
                return round_
        return None

    async def list_rounds(self, status: Optional[RoundStatus] = None) -> List[Round]:
        rounds = [
            r for r in self._rounds.values()
            if status is None or r.status == status
        ]
        return sorted(rounds, key=lambda r: r.round_number)

    async def insert_round(self, round_: Round, state: EliminationState) -> Round:
        async with self._lock:
            stored = replace(round_, id=self._next_round_id)
            self._next_round_id += 1
            self._rounds[stored.id] = stored
            state.round_id = stored.id
            self._states[stored.id] = state.to_dict()
            return stored

    async def save_round(self, round_: Round) -> Round:
        if round_.id not in self._rounds:
            raise RoundNotFoundError(round_.id)
        self._rounds[round_.id] = round_
        return round_

    async def load_elimination_state(self, round_id: int) -> Optional[EliminationState]:
        data = self._states.get(round_id)
        if data is None:
            return None
        return EliminationState.from_dict(data)

    async def save_session(self, round_: Round, state: EliminationState) -> None:
        if round_.id not in self._rounds:
            raise RoundNotFoundError(round_.id)
        self._rounds[round_.id] = round_
        self._states[round_.id] = state.to_dict()

    async def complete_round(
        self,
        round_: Round,
        results: Sequence[RoundResult],
    ) -> List[RoundResult]:
        async with self._lock:
            current = self._rounds.get(round_.id)
            if current is None:
                raise RoundNotFoundError(round_.id)
            if current.status == RoundStatus.COMPLETED:
                raise AlreadyCompletedError(round_.id)

            stored = []
            for result in results:
                stored.append(replace(result, id=self._next_result_id, round_id=round_.id))
                self._next_result_id += 1

            self._results[round_.id] = stored
            self._rounds[round_.id] = round_.touch(status=RoundStatus.COMPLETED)
            self._states.pop(round_.id, None)
            return list(stored)

    async def list_results(self, round_ids: Optional[Sequence[int]] = None) -> List[RoundResult]:
        ids = round_ids if round_ids is not None else sorted(self._results)
        results: List[RoundResult] = []
        for round_id in ids:
            results.extend(self._results.get(round_id, []))
        return results
