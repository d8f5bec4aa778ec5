"""structlog setup for the session engine.

모든 상태 변경 이벤트는 snake_case 이벤트명 + round_id 컨텍스트로 기록된다.
금액(Decimal)은 JSON 출력에서 문자열로 유지해 정밀도를 잃지 않는다.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from pokerleague.utils.json_utils import json_dumps

# 엔진 자체가 아닌 드라이버 로거
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "redis")


def _orjson_serializer(event: EventDict, **_: Any) -> str:
    return json_dumps(event)


def _add_app_env(app_env: str) -> Processor:
    def processor(_logger: WrappedLogger, _name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_env", app_env)
        return event_dict

    return processor


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    app_env: str = "development",
) -> None:
    """Configure structlog and bridge stdlib logging through it.

    JSON output (orjson) for production or when json_logs is set,
    colored console output otherwise.
    """
    use_json = json_logs or app_env == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if use_json:
        shared_processors.append(_add_app_env(app_env))
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer(serializer=_orjson_serializer)
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("player_eliminated", player_id=12, position=7)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def round_context(round_id: int | None, **extra: Any) -> Iterator[None]:
    """Bind round_id (and extras) for the duration of one round operation."""
    context = {"round_id": round_id, **extra}
    bind_context(**context)
    try:
        yield
    finally:
        unbind_context(*context)
