"""라운드 세션 테스트 공용 Fixtures."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from pokerleague.config import Settings
from pokerleague.tournament.distributed_lock import LocalLockManager
from pokerleague.tournament.models import (
    BlindLevel,
    FinalTableCutPolicy,
    Round,
    RoundStatus,
    RoundType,
    TournamentSettings,
)
from pokerleague.tournament.scoring import ScoringTable
from pokerleague.tournament.session import TournamentSessionEngine
from pokerleague.tournament.store import InMemoryRoundStore

T0 = datetime(2024, 3, 1, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    """라운드 시작 기준 시각."""
    return T0


@pytest.fixture
def tournament_settings() -> TournamentSettings:
    """10분 레벨 2개 + 5분 휴식 + 10분 레벨."""
    return TournamentSettings(
        blind_levels=(
            BlindLevel("100/200"),
            BlindLevel("200/400"),
            BlindLevel("BREAK", duration_minutes=5),
            BlindLevel("300/600"),
        ),
        blind_level_duration=10,
        default_buy_in=Decimal("600"),
        final_table_cut=FinalTableCutPolicy(percentage=Decimal("33.33")),
        max_rebuys_per_round=2,
        total_rounds=2,
        final_table_top_players=3,
    )


@pytest.fixture
def scoring() -> ScoringTable:
    return ScoringTable.from_rules([(1, 10), (2, 7), (3, 5), (4, 3), (5, 2), (6, 1)])


@pytest.fixture
def app_settings() -> Settings:
    """재시도 대기 없는 테스트 설정."""
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url=None,
        store_read_attempts=3,
        store_read_wait_seconds=0,
        round_lock_acquire_timeout_ms=200,
    )


@pytest.fixture
def store() -> InMemoryRoundStore:
    return InMemoryRoundStore()


@pytest.fixture
def engine(store, tournament_settings, scoring, app_settings) -> TournamentSessionEngine:
    """메모리 저장소 + 프로세스 내 락 엔진."""
    return TournamentSessionEngine(
        store,
        tournament_settings,
        scoring,
        locks=LocalLockManager(default_acquire_timeout_ms=200),
        app_settings=app_settings,
        clock=lambda: T0,
    )


@pytest_asyncio.fixture
async def active_round(engine) -> Round:
    """6명 착석, 타이머 시작된 정규 라운드."""
    round_ = await engine.create_round(
        1,
        RoundType.REGULAR,
        buy_in_value=600,
        seated_player_ids=[1, 2, 3, 4, 5, 6],
    )
    return await engine.start_round(round_.id, now=T0)


def make_round(**overrides) -> Round:
    """테스트용 Round 스냅샷."""
    values = {
        "id": 1,
        "round_number": 1,
        "round_type": RoundType.REGULAR,
        "status": RoundStatus.ACTIVE,
        "seated_player_ids": (1, 2, 3, 4, 5, 6),
    }
    values.update(overrides)
    return Round(**values)
