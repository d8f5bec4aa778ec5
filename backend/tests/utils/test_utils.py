"""Tests for JSON, error and configuration helpers."""

import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import structlog
from pydantic import ValidationError

from pokerleague.config import Settings
from pokerleague.logging_config import clear_context, configure_logging, get_logger, round_context
from pokerleague.tournament.models import RoundStatus
from pokerleague.utils.errors import (
    ErrorCode,
    ImbalancedDistributionError,
    RebuyNotAllowedError,
    TransientIOError,
)
from pokerleague.utils.json_utils import json_dumps, json_loads


class TestJsonUtils:
    """orjson wrappers used for the elimination snapshot column."""

    def test_decimal_serialized_as_string(self):
        """Money must not lose precision through float."""
        assert json_loads(json_dumps({"prize": Decimal("1920.50")})) == {"prize": "1920.50"}

    def test_enum_and_datetime(self):
        data = json_loads(
            json_dumps(
                {
                    "status": RoundStatus.ACTIVE,
                    "at": datetime(2024, 3, 1, 20, 0, tzinfo=timezone.utc),
                }
            )
        )
        assert data == {"status": "active", "at": "2024-03-01T20:00:00Z"}

    def test_pretty(self):
        assert "\n" in json_dumps({"a": 1}, pretty=True)

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            json_dumps({"value": object()})


class TestErrors:
    def test_to_dict(self):
        error = ImbalancedDistributionError(Decimal("3180"), Decimal("3200"), Decimal("-20"))

        data = error.to_dict()

        assert data["errorCode"] == ErrorCode.IMBALANCED_DISTRIBUTION.value
        assert data["details"] == {"distributed": "3180", "netPool": "3200", "difference": "-20"}
        assert data["recoverable"] is True

    def test_rebuy_error_code(self):
        """RebuyNotAllowedError is an invalid transition with its own code."""
        assert RebuyNotAllowedError(1, "limit").code == "REBUY_NOT_ALLOWED"

    def test_transient_details(self):
        error = TransientIOError("complete_round", "connection reset")
        assert error.details == {"operation": "complete_round", "cause": "connection reset"}


class TestSettings:
    def test_log_level_normalized(self):
        assert Settings(log_level="info").log_level == "INFO"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="loud")

    def test_read_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(store_read_attempts=0)

    def test_production_forces_json_logs(self):
        settings = Settings(app_env="production", log_level="INFO")
        assert settings.json_logs


class TestLogging:
    def test_round_context_unbinds(self):
        clear_context()
        with round_context(7, operation="eliminate"):
            assert structlog.contextvars.get_contextvars() == {
                "round_id": 7,
                "operation": "eliminate",
            }
        assert structlog.contextvars.get_contextvars() == {}

    def test_json_logs_keep_money_as_string(self, capsys):
        configure_logging(log_level="INFO", json_logs=True, app_env="test")
        get_logger("pokerleague.test").info("prize_paid", prize=Decimal("1920"))

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json_loads(line)
        assert event["event"] == "prize_paid"
        assert event["prize"] == "1920"
        assert event["app_env"] == "test"
        logging.getLogger().handlers.clear()
