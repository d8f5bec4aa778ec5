"""세션 엔진 프로세스 시작/종료 테스트."""

from decimal import Decimal

import pytest

from pokerleague.config import Settings
from pokerleague.main import lifespan
from pokerleague.tournament.distributed_lock import LocalLockManager
from pokerleague.utils import db

from tests.tournament.conftest import T0


@pytest.fixture
def file_settings(tmp_path) -> Settings:
    """연결마다 같은 DB를 보도록 파일 SQLite 사용."""
    return Settings(
        app_env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'league.db'}",
        redis_url=None,
        store_read_wait_seconds=0,
        round_lock_acquire_timeout_ms=200,
    )


class TestLifespan:
    @pytest.mark.asyncio
    async def test_round_runs_inside_lifespan(self, tournament_settings, scoring, file_settings):
        async with lifespan(
            tournament_settings, scoring, file_settings, create_tables=True
        ) as engine:
            assert isinstance(engine.locks, LocalLockManager)

            round_ = await engine.create_round(1, seated_player_ids=[1, 2, 3], buy_in_value=600)
            await engine.start_round(round_.id, now=T0)
            await engine.eliminate(round_.id, 3)
            await engine.eliminate(round_.id, 2)
            results = await engine.complete_round(round_.id)

            assert {r.player_id: r.position for r in results} == {1: 1, 2: 2, 3: 3}
            assert sum(r.prize for r in results) == Decimal("1200")

        # 종료 후 전역 엔진 정리
        assert db._engine is None
        assert db._session_factory is None

    @pytest.mark.asyncio
    async def test_shutdown_runs_when_body_raises(
        self, tournament_settings, scoring, file_settings
    ):
        with pytest.raises(RuntimeError):
            async with lifespan(tournament_settings, scoring, file_settings, create_tables=True):
                raise RuntimeError("boom")

        assert db._engine is None
