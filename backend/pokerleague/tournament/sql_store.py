"""
SQLAlchemy Round Store.

SQLAlchemy 2.0 async ORM 기반 RoundStore 구현.

- Round 행 + 탈락 스냅샷(JSON)을 한 트랜잭션으로 저장
- 라운드 완료: 결과 행 전체 + 상태 변경을 단일 트랜잭션으로 처리
- 드라이버 오류(연결 끊김, 타임아웃)는 TransientIOError로 변환
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pokerleague.logging_config import get_logger
from pokerleague.models import RoundRecord, RoundResultRecord
from pokerleague.utils.errors import (
    AlreadyCompletedError,
    DuplicateRoundNumberError,
    RoundNotFoundError,
    SessionError,
    TransientIOError,
)

from .elimination import EliminationState
from .models import Round, RoundResult, RoundStatus, RoundType
from .store import RoundStore

logger = get_logger(__name__)

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, TimeoutError, ConnectionError)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_round(record: RoundRecord) -> Round:
    return Round(
        id=record.id,
        round_number=record.round_number,
        round_type=RoundType(record.round_type),
        buy_in_value=record.buy_in_value,
        rebuy_value=record.rebuy_value,
        knockout_value=record.knockout_value,
        is_final_table=record.is_final_table,
        status=RoundStatus(record.status),
        seated_player_ids=tuple(record.seated_player_ids or ()),
        rebuy_deadline_passed=record.rebuy_deadline_passed,
        is_started=record.is_started,
        current_level=record.current_level,
        is_paused=record.is_paused,
        timer_started_at=_aware(record.timer_started_at),
        time_remaining_seconds=record.time_remaining_seconds,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _apply(record: RoundRecord, round_: Round) -> None:
    record.round_number = round_.round_number
    record.round_type = round_.round_type.value
    record.status = round_.status.value
    record.buy_in_value = round_.buy_in_value
    record.rebuy_value = round_.rebuy_value
    record.knockout_value = round_.knockout_value
    record.is_final_table = round_.is_final_table
    record.rebuy_deadline_passed = round_.rebuy_deadline_passed
    record.seated_player_ids = list(round_.seated_player_ids)
    record.is_started = round_.is_started
    record.current_level = round_.current_level
    record.is_paused = round_.is_paused
    record.timer_started_at = round_.timer_started_at
    record.time_remaining_seconds = round_.time_remaining_seconds


def _to_result(record: RoundResultRecord) -> RoundResult:
    return RoundResult(
        id=record.id,
        round_id=record.round_id,
        player_id=record.player_id,
        position=record.position,
        points=record.points,
        rebuys=record.rebuys,
        knockout_earnings=Decimal(record.knockout_earnings or 0),
        prize=Decimal(record.prize or 0),
    )


class SqlAlchemyRoundStore(RoundStore):
    """
    RoundStore backed by SQLAlchemy async sessions.

    사용 예:
    ```python
    store = SqlAlchemyRoundStore(get_session_factory())
    round_ = await store.get_round(1)
    ```
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SessionError:
            raise
        except TRANSIENT_ERRORS as exc:
            logger.error("store_unavailable", operation=operation, error=str(exc))
            raise TransientIOError(operation, str(exc)) from exc

    async def _get_record(self, session: AsyncSession, round_id: int) -> RoundRecord:
        record = await session.get(RoundRecord, round_id)
        if record is None:
            raise RoundNotFoundError(round_id)
        return record

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_round(self, round_id: int) -> Optional[Round]:
        async with self._transaction("get_round") as session:
            record = await session.get(RoundRecord, round_id)
            return _to_round(record) if record else None

    async def find_round_by_number(self, round_number: int) -> Optional[Round]:
        async with self._transaction("find_round_by_number") as session:
            result = await session.execute(
                select(RoundRecord).where(RoundRecord.round_number == round_number)
            )
            record = result.scalar_one_or_none()
            return _to_round(record) if record else None

    async def get_active_round(self) -> Optional[Round]:
        async with self._transaction("get_active_round") as session:
            result = await session.execute(
                select(RoundRecord)
                .where(RoundRecord.status == RoundStatus.ACTIVE.value)
                .order_by(RoundRecord.round_number)
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return _to_round(record) if record else None

    async def list_rounds(self, status: Optional[RoundStatus] = None) -> List[Round]:
        async with self._transaction("list_rounds") as session:
            query = select(RoundRecord).order_by(RoundRecord.round_number)
            if status is not None:
                query = query.where(RoundRecord.status == status.value)
            result = await session.execute(query)
            return [_to_round(record) for record in result.scalars().all()]

    async def load_elimination_state(self, round_id: int) -> Optional[EliminationState]:
        async with self._transaction("load_elimination_state") as session:
            record = await self._get_record(session, round_id)
            if record.elimination_state is None:
                return None
            return EliminationState.from_dict(record.elimination_state)

    async def list_results(self, round_ids: Optional[Sequence[int]] = None) -> List[RoundResult]:
        async with self._transaction("list_results") as session:
            query = select(RoundResultRecord).order_by(
                RoundResultRecord.round_id,
                RoundResultRecord.position,
            )
            if round_ids is not None:
                query = query.where(RoundResultRecord.round_id.in_(list(round_ids)))
            result = await session.execute(query)
            return [_to_result(record) for record in result.scalars().all()]

    # =========================================================================
    # Writes
    # =========================================================================

    async def insert_round(self, round_: Round, state: EliminationState) -> Round:
        try:
            async with self._transaction("insert_round") as session:
                record = RoundRecord()
                _apply(record, round_)
                session.add(record)
                await session.flush()

                state.round_id = record.id
                record.elimination_state = state.to_dict()
                await session.flush()
                await session.refresh(record)
                stored = _to_round(record)
        except IntegrityError as exc:
            raise DuplicateRoundNumberError(round_.round_number) from exc

        logger.info("round_inserted", round_id=stored.id, round_number=stored.round_number)
        return stored

    async def save_round(self, round_: Round) -> Round:
        async with self._transaction("save_round") as session:
            record = await self._get_record(session, round_.id)
            _apply(record, round_)
        return round_

    async def save_session(self, round_: Round, state: EliminationState) -> None:
        async with self._transaction("save_session") as session:
            record = await self._get_record(session, round_.id)
            _apply(record, round_)
            record.elimination_state = state.to_dict()

    async def complete_round(
        self,
        round_: Round,
        results: Sequence[RoundResult],
    ) -> List[RoundResult]:
        async with self._transaction("complete_round") as session:
            record = await session.get(RoundRecord, round_.id, with_for_update=True)
            if record is None:
                raise RoundNotFoundError(round_.id)
            if record.status == RoundStatus.COMPLETED.value:
                raise AlreadyCompletedError(round_.id)

            rows = [
                RoundResultRecord(
                    round_id=round_.id,
                    player_id=result.player_id,
                    position=result.position,
                    points=result.points,
                    rebuys=result.rebuys,
                    knockout_earnings=result.knockout_earnings,
                    prize=result.prize,
                )
                for result in results
            ]
            session.add_all(rows)

            _apply(record, round_)
            record.status = RoundStatus.COMPLETED.value
            record.elimination_state = None
            await session.flush()
            stored = [_to_result(row) for row in rows]

        logger.info("round_results_written", round_id=round_.id, results=len(stored))
        return stored

    async def close(self) -> None:
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            await bind.dispose()
