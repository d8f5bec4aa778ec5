"""League session engine entry point.

시즌 운영 프로세스의 시작/종료 처리:
로깅 설정 -> DB 연결 -> 락 매니저 -> 엔진 생성, 종료 시 역순 정리.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from pokerleague.config import Settings, get_settings
from pokerleague.logging_config import clear_context, configure_logging, get_logger
from pokerleague.tournament.models import TournamentSettings
from pokerleague.tournament.scoring import ScoringTable
from pokerleague.tournament.session import (
    RoundFinishedCallback,
    TournamentSessionEngine,
    build_session_engine,
)
from pokerleague.utils.db import close_db, init_db
from pokerleague.utils.redis_client import close_redis

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(
    settings: TournamentSettings,
    scoring: ScoringTable,
    app_settings: Optional[Settings] = None,
    on_round_finished: Optional[RoundFinishedCallback] = None,
    create_tables: bool = False,
) -> AsyncIterator[TournamentSessionEngine]:
    """Startup and shutdown for a session engine process.

    Usage:
        async with lifespan(settings, scoring) as engine:
            await engine.create_round(1, seated_player_ids=[...])
    """
    app_settings = app_settings or get_settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_logs=app_settings.json_logs,
        app_env=app_settings.app_env,
    )

    # Startup
    logger.info("Starting session engine...", app_env=app_settings.app_env)
    await init_db(app_settings, create_tables=create_tables)
    logger.info("Database connection established")

    engine: Optional[TournamentSessionEngine] = None
    try:
        engine = await build_session_engine(
            settings,
            scoring,
            app_settings=app_settings,
            on_round_finished=on_round_finished,
        )
        yield engine
    finally:
        # Shutdown
        logger.info("Shutting down session engine...")
        if engine is not None:
            released = await engine.locks.cleanup_all()
            logger.info("Round locks released", released=released)
        await close_redis()
        await close_db()
        logger.info("Session engine shutdown complete")
        clear_context()
