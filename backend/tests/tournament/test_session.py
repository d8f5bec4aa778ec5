"""라운드 세션 엔진 통합 테스트.

메모리 저장소 + 프로세스 내 락으로 라운드 생명주기 전체를 검증:
- 생성 가드 (중복 번호, 동시 활성 라운드)
- 타이머 조작 / 휴식 레벨 도달 시 리바이 마감
- 탈락 -> 완료 훅 1회 -> 원자적 완료
- 조회 재시도 / 상태 변경 비재시도
- 시즌 순위, 파이널 테이블 생성 및 교체
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from pokerleague.tournament.distributed_lock import LocalLockManager, LockType
from pokerleague.tournament.models import ResultEntry, RoundStatus, RoundType
from pokerleague.tournament.session import RoundObserver, build_session_engine
from pokerleague.tournament.sql_store import SqlAlchemyRoundStore
from pokerleague.utils.db import close_db
from pokerleague.utils.errors import (
    AlreadyCompletedError,
    DuplicateRoundNumberError,
    ImbalancedDistributionError,
    InvalidTransitionError,
    PlayerNotSeatedError,
    RebuyNotAllowedError,
    RoundAlreadyActiveError,
    RoundNotEliminatedError,
    RoundNotFoundError,
    TransientIOError,
)

from tests.tournament.conftest import T0

PLAYERS = (1, 2, 3, 4, 5, 6)


async def play_round(engine, number, elimination_order, players=PLAYERS):
    """라운드 생성 -> 시작 -> 전원 탈락 -> 완료."""
    round_ = await engine.create_round(number, seated_player_ids=players, buy_in_value=600)
    await engine.start_round(round_.id, now=T0)
    for player_id in elimination_order:
        await engine.eliminate(round_.id, player_id)
    await engine.complete_round(round_.id)
    return round_


async def eliminate_all(engine, round_id, order=(6, 5, 4, 3, 2)):
    for player_id in order:
        await engine.eliminate(round_id, player_id)


# =============================================================================
# Creation guards
# =============================================================================


class TestCreateRound:
    @pytest.mark.asyncio
    async def test_created_active_with_seats(self, engine, active_round, store):
        assert active_round.status == RoundStatus.ACTIVE
        assert active_round.seated_player_ids == PLAYERS

        state = await store.load_elimination_state(active_round.id)
        assert state.next_position == 6

    @pytest.mark.asyncio
    async def test_second_active_round_rejected(self, engine, active_round):
        with pytest.raises(RoundAlreadyActiveError) as exc_info:
            await engine.create_round(2, seated_player_ids=[1, 2])
        assert exc_info.value.details["activeRoundId"] == active_round.id

    @pytest.mark.asyncio
    async def test_duplicate_round_number(self, engine, active_round):
        with pytest.raises(DuplicateRoundNumberError):
            await engine.create_round(1, seated_player_ids=[1, 2])

    @pytest.mark.asyncio
    async def test_unknown_round(self, engine):
        with pytest.raises(RoundNotFoundError):
            await engine.start_round(404)


# =============================================================================
# Timer
# =============================================================================


class TestTimerOperations:
    @pytest.mark.asyncio
    async def test_toggle_pause_persists_frozen_value(self, engine, active_round, store):
        await engine.toggle_pause(active_round.id, now=T0 + timedelta(seconds=65))

        stored = await store.get_round(active_round.id)
        assert stored.is_paused
        assert stored.time_remaining_seconds == 535

    @pytest.mark.asyncio
    async def test_overlapping_toggles_both_apply(self, engine, active_round, store, monkeypatch):
        load_round = store.get_round

        async def slow_get_round(round_id):
            round_ = await load_round(round_id)
            await asyncio.sleep(0.01)
            return round_

        monkeypatch.setattr(store, "get_round", slow_get_round)

        await asyncio.gather(
            engine.toggle_pause(active_round.id, now=T0 + timedelta(seconds=10)),
            engine.toggle_pause(active_round.id, now=T0 + timedelta(seconds=20)),
        )

        stored = await load_round(active_round.id)
        assert not stored.is_paused

    @pytest.mark.asyncio
    async def test_view_never_writes(self, engine, active_round, store):
        view = await engine.get_timer_view(active_round.id, now=T0 + timedelta(seconds=610))

        assert view.pending_advance
        assert view.level_index == 1
        assert (await store.get_round(active_round.id)).current_level == 0

    @pytest.mark.asyncio
    async def test_sync_persists_boundaries_and_closes_rebuys(self, engine, active_round, store):
        await engine.rebuy(active_round.id, 1)

        transitions = await engine.sync_timer(active_round.id, now=T0 + timedelta(seconds=1201))

        assert [t.to_level for t in transitions] == [1, 2]
        stored = await store.get_round(active_round.id)
        assert stored.current_level == 2
        assert stored.rebuy_deadline_passed
        with pytest.raises(RebuyNotAllowedError):
            await engine.rebuy(active_round.id, 1)

    @pytest.mark.asyncio
    async def test_sync_twice_is_noop(self, engine, active_round):
        now = T0 + timedelta(seconds=601)
        assert len(await engine.sync_timer(active_round.id, now=now)) == 1
        assert await engine.sync_timer(active_round.id, now=now) == []

    @pytest.mark.asyncio
    async def test_manual_level_change(self, engine, active_round):
        round_, transition = await engine.advance_level(active_round.id, +1, now=T0)
        assert transition.occurred
        assert round_.current_level == 1
        assert not round_.rebuy_deadline_passed

        round_ = await engine.set_level(active_round.id, 2, 100, timer_started_at=T0)
        assert round_.rebuy_deadline_passed
        assert round_.time_remaining_seconds == 100

    @pytest.mark.asyncio
    async def test_mark_rebuy_deadline(self, engine, active_round):
        round_ = await engine.mark_rebuy_deadline(active_round.id)
        assert round_.rebuy_deadline_passed

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, engine, active_round):
        with pytest.raises(InvalidTransitionError):
            await engine.start_round(active_round.id)


# =============================================================================
# Elimination flow
# =============================================================================


class TestEliminationFlow:
    @pytest.mark.asyncio
    async def test_hook_fires_once_with_payouts(self, engine, active_round, store):
        hook = AsyncMock()
        engine.on_round_finished = hook

        await eliminate_all(engine, active_round.id, order=(6, 5, 4, 3))
        outcome = await engine.eliminate(active_round.id, 2, idempotency_key="final")
        replay = await engine.eliminate(active_round.id, 2, idempotency_key="final")

        assert outcome.all_eliminated
        assert replay.duplicate
        hook.assert_awaited_once()
        round_, sheet = hook.await_args.args
        assert round_.is_paused
        assert sheet.prizes_by_player() == {
            1: Decimal("1440"),
            2: Decimal("720"),
            3: Decimal("240"),
        }
        assert (await store.load_elimination_state(active_round.id)).completion_pending

    @pytest.mark.asyncio
    async def test_restore_after_finish_fires_hook_again(self, engine, active_round, store):
        hook = AsyncMock()
        engine.on_round_finished = hook
        await eliminate_all(engine, active_round.id)

        restored = await engine.restore(active_round.id, 5)

        assert sorted(restored) == [1, 2, 5]
        state = await store.load_elimination_state(active_round.id)
        assert not state.completion_pending

        await eliminate_all(engine, active_round.id, order=(5, 2))

        assert hook.await_count == 2
        players = await engine.get_elimination_state(active_round.id)
        positions = {p.player_id: p.position for p in players}
        assert positions == {1: 1, 2: 2, 3: 4, 4: 5, 5: 3, 6: 6}

    @pytest.mark.asyncio
    async def test_concurrent_eliminations_get_distinct_positions(self, engine, active_round):
        outcomes = await asyncio.gather(
            engine.eliminate(active_round.id, 6),
            engine.eliminate(active_round.id, 5),
            engine.eliminate(active_round.id, 4),
        )

        assert sorted(o.position for o in outcomes) == [4, 5, 6]

    @pytest.mark.asyncio
    async def test_restore_and_remove(self, engine, active_round):
        await engine.eliminate(active_round.id, 6)
        assert await engine.restore(active_round.id, 6) == [6]

        round_ = await engine.remove_player(active_round.id, 6)

        assert 6 not in round_.seated_player_ids
        players = await engine.get_elimination_state(active_round.id)
        assert sorted(p.player_id for p in players) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_observer_snapshot(self, engine, active_round):
        on_snapshot = AsyncMock()
        observer = RoundObserver(engine, active_round.id, on_snapshot)

        snapshot = await observer.poll_once()

        on_snapshot.assert_awaited_once_with(snapshot)
        assert observer.poll_seconds == 5.0
        assert len(snapshot.players) == 6
        assert snapshot.to_dict()["timer"]["remaining_seconds"] == 600


# =============================================================================
# Completion
# =============================================================================


class TestCompleteRound:
    @pytest.mark.asyncio
    async def test_complete_writes_results(self, engine, active_round, store):
        await eliminate_all(engine, active_round.id)

        results = await engine.complete_round(active_round.id)

        by_player = {r.player_id: r for r in results}
        assert len(results) == 6
        assert by_player[1].points == 10
        assert by_player[6].points == 1
        assert by_player[1].prize == Decimal("1440")
        stored = await store.get_round(active_round.id)
        assert stored.status == RoundStatus.COMPLETED
        assert await store.load_elimination_state(active_round.id) is None

    @pytest.mark.asyncio
    async def test_complete_twice(self, engine, active_round):
        await eliminate_all(engine, active_round.id)
        await engine.complete_round(active_round.id)

        with pytest.raises(AlreadyCompletedError):
            await engine.complete_round(active_round.id)

    @pytest.mark.asyncio
    async def test_unplaced_players_block_completion(self, engine, active_round):
        await engine.eliminate(active_round.id, 6)

        with pytest.raises(RoundNotEliminatedError) as exc_info:
            await engine.complete_round(active_round.id)

        assert exc_info.value.details["unplacedPlayerIds"] == [1, 2, 3, 4, 5]
        assert exc_info.value.to_dict()["errorCode"] == "ROUND_NOT_ELIMINATED"

    @pytest.mark.asyncio
    async def test_confirmed_early_finish(self, engine, active_round):
        await engine.eliminate(active_round.id, 6)
        await engine.eliminate(active_round.id, 5)

        results = await engine.complete_round(active_round.id, confirm_early_finish=True)

        assert sorted(r.position for r in results) == [5, 6]

    @pytest.mark.asyncio
    async def test_early_finish_without_prizes_skips_balance(self, engine, active_round):
        results = await engine.complete_round(
            active_round.id,
            results=[ResultEntry(player_id=6, position=6)],
            confirm_early_finish=True,
        )
        assert [r.player_id for r in results] == [6]

    @pytest.mark.asyncio
    async def test_imbalanced_manual_prizes_rejected(self, engine, active_round, store):
        await eliminate_all(engine, active_round.id)
        entries = [
            ResultEntry(player_id=1, position=1, prize=Decimal("2000")),
            ResultEntry(player_id=2, position=2, prize=Decimal("720")),
            ResultEntry(player_id=3, position=3, prize=Decimal("240")),
            ResultEntry(player_id=4, position=4),
            ResultEntry(player_id=5, position=5),
            ResultEntry(player_id=6, position=6),
        ]

        with pytest.raises(ImbalancedDistributionError):
            await engine.complete_round(active_round.id, results=entries)

        assert (await store.get_round(active_round.id)).status == RoundStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_dealer_line_balances_manual_prizes(self, engine, active_round):
        await eliminate_all(engine, active_round.id)
        entries = [
            ResultEntry(player_id=1, position=1, prize=Decimal("1400")),
            ResultEntry(player_id=2, position=2, prize=Decimal("700")),
            ResultEntry(player_id=3, position=3, prize=Decimal("200")),
            ResultEntry(player_id=4, position=4),
            ResultEntry(player_id=5, position=5),
            ResultEntry(player_id=6, position=6),
        ]

        results = await engine.complete_round(
            active_round.id,
            results=entries,
            dealer_amount=Decimal("100"),
        )

        assert {r.player_id: r.prize for r in results}[1] == Decimal("1400")

    @pytest.mark.asyncio
    async def test_unknown_player_in_results(self, engine, active_round):
        with pytest.raises(PlayerNotSeatedError):
            await engine.complete_round(
                active_round.id,
                results=[ResultEntry(player_id=99, position=1)],
                confirm_early_finish=True,
            )

    @pytest.mark.asyncio
    async def test_store_failure_leaves_round_active(self, engine, active_round, store):
        await eliminate_all(engine, active_round.id)
        store.complete_round = AsyncMock(side_effect=TransientIOError("complete_round"))

        with pytest.raises(TransientIOError):
            await engine.complete_round(active_round.id)

        assert (await store.get_round(active_round.id)).status == RoundStatus.ACTIVE


# =============================================================================
# Retry policy
# =============================================================================


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_reads_retry_transient_errors(self, engine, active_round, store):
        current = await store.get_round(active_round.id)
        store.get_round = AsyncMock(side_effect=[TransientIOError("get_round"), current])

        view = await engine.get_timer_view(active_round.id)

        assert view.remaining_seconds == 600
        assert store.get_round.await_count == 2

    @pytest.mark.asyncio
    async def test_reads_give_up_after_attempts(self, engine, active_round, store):
        store.get_round = AsyncMock(side_effect=TransientIOError("get_round"))

        with pytest.raises(TransientIOError):
            await engine.get_timer_view(active_round.id)

        assert store.get_round.await_count == 3

    @pytest.mark.asyncio
    async def test_mutations_not_retried(self, engine, active_round, store):
        store.save_round = AsyncMock(side_effect=TransientIOError("save_round"))

        with pytest.raises(TransientIOError):
            await engine.set_paused(active_round.id, True)

        assert store.save_round.await_count == 1

    @pytest.mark.asyncio
    async def test_lock_timeout_is_transient(self, engine, active_round):
        locks = engine.locks
        assert isinstance(locks, LocalLockManager)

        async with locks.lock(LockType.ROUND, active_round.id):
            with pytest.raises(TransientIOError):
                await engine.eliminate(active_round.id, 6)


# =============================================================================
# Season
# =============================================================================


class TestSeason:
    @pytest.mark.asyncio
    async def test_rankings_and_prize_pool(self, engine):
        await play_round(engine, 1, (6, 5, 4, 3, 2))
        await play_round(engine, 2, (6, 5, 4, 2, 3))

        standings = await engine.get_rankings()
        pool = await engine.get_season_prize_pool()

        assert [e.player_id for e in standings.top(3)] == [1, 2, 3]
        assert standings.entries[0].total_points == 20
        assert pool.total_gross == Decimal("7200")
        assert pool.final_table_pot == Decimal("2400")

    @pytest.mark.asyncio
    async def test_final_table_requires_all_rounds(self, engine):
        await play_round(engine, 1, (6, 5, 4, 3, 2))

        with pytest.raises(InvalidTransitionError):
            await engine.generate_final_table()

    @pytest.mark.asyncio
    async def test_final_table_lifecycle(self, engine):
        await play_round(engine, 1, (6, 5, 4, 3, 2))
        await play_round(engine, 2, (6, 5, 4, 2, 3))

        final = await engine.generate_final_table()

        assert final.round_number == 3
        assert final.is_final_table
        assert final.status == RoundStatus.SCHEDULED
        assert final.seated_player_ids == (1, 2, 3)
        with pytest.raises(InvalidTransitionError):
            await engine.generate_final_table()

        final = await engine.replace_final_table_player(final.id, 3, excluded_player_ids=[4])
        assert final.seated_player_ids == (1, 2, 5)

        started = await engine.start_round(final.id, now=T0)
        assert started.status == RoundStatus.ACTIVE
        await eliminate_all(engine, final.id, order=(5, 2))
        results = await engine.complete_round(final.id)

        assert {r.player_id: r.prize for r in results} == {
            1: Decimal("1440"),
            2: Decimal("720"),
            5: Decimal("240"),
        }
        # 파이널 테이블은 시즌 순위에 포함되지 않음
        standings = await engine.get_rankings()
        assert standings.entries[0].total_points == 20

    @pytest.mark.asyncio
    async def test_scheduled_round_waits_for_active_one(self, engine):
        await play_round(engine, 1, (6, 5, 4, 3, 2))
        await play_round(engine, 2, (6, 5, 4, 2, 3))
        final = await engine.generate_final_table()
        await engine.create_round(10, RoundType.FREEZEOUT, seated_player_ids=[7, 8])

        with pytest.raises(RoundAlreadyActiveError):
            await engine.start_round(final.id)

    @pytest.mark.asyncio
    async def test_draw_tables(self, engine, active_round):
        tables = await engine.draw_tables(active_round.id, seed=7)

        assert len(tables) == 1
        assert sorted(tables[0].player_ids) == list(PLAYERS)


class TestBuildSessionEngine:
    @pytest.mark.asyncio
    async def test_local_wiring_without_redis(self, tournament_settings, scoring, app_settings):
        engine = await build_session_engine(tournament_settings, scoring, app_settings)

        assert isinstance(engine.store, SqlAlchemyRoundStore)
        assert isinstance(engine.locks, LocalLockManager)
        await close_db()
