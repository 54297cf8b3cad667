"""
Tests for configuration and structured logging
"""

import json
import logging
from decimal import Decimal

import pytest

from credit_core.config import CreditCoreConfig, get_config, reload_config
from credit_core.logging_config import JSONFormatter, setup_logging, log_action


class TestConfig:
    """Environment-driven settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CREDIT_CORE_DATABASE_URL", raising=False)
        config = CreditCoreConfig(_env_file=None)

        assert config.database_url == "sqlite:///credit_core.db"
        assert config.scheduler_interval_seconds == 43200
        assert config.scheduler_penalty_rate == Decimal('0.10')
        assert config.fallback_annual_rate == Decimal('16.0')
        assert config.bank_margin == Decimal('5.0')
        assert config.max_term_months == 360
        assert config.notification_webhook_url is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CREDIT_CORE_DATABASE_URL", "memory://")
        monkeypatch.setenv("CREDIT_CORE_SCHEDULER_PENALTY_RATE", "0.05")
        monkeypatch.setenv("credit_core_rate_provider_enabled", "false")

        config = CreditCoreConfig(_env_file=None)
        assert config.database_url == "memory://"
        assert config.scheduler_penalty_rate == Decimal('0.05')
        assert config.rate_provider_enabled is False

    def test_reload(self, monkeypatch):
        monkeypatch.setenv("CREDIT_CORE_LOG_LEVEL", "DEBUG")
        config = reload_config()
        assert config.log_level == "DEBUG"
        assert get_config() is config

        monkeypatch.setenv("CREDIT_CORE_LOG_LEVEL", "WARNING")
        assert get_config().log_level == "DEBUG"
        assert reload_config().log_level == "WARNING"


class TestStructuredLogging:
    """JSON log records carry the action fields"""

    def make_record(self, **fields):
        record = logging.LogRecord("credit_core.test", logging.INFO, __file__, 1,
                                   "Credit created", None, None)
        for key, value in fields.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        record = self.make_record(user_id="user-1", action="credit_create",
                                  resource="credit:c-1", extra={"amount": Decimal('100.00')})
        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "credit_core.test"
        assert entry["message"] == "Credit created"
        assert entry["action"] == "credit_create"
        assert entry["resource"] == "credit:c-1"
        assert entry["extra"] == {"amount": "100.00"}
        assert "timestamp" in entry

    def test_json_formatter_omits_missing_fields(self):
        entry = json.loads(JSONFormatter().format(self.make_record()))
        assert "user_id" not in entry
        assert "extra" not in entry

    def test_log_action_attaches_fields(self, caplog):
        logger = logging.getLogger("test.log_action")
        with caplog.at_level(logging.WARNING, logger="test.log_action"):
            log_action(logger, "warning", "Penalty added", user_id="user-9",
                       action="overdue_penalty", extra={"penalty": "979.80"})
            log_action(logger, "info", "Filtered out")

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.levelname == "WARNING"
        assert record.user_id == "user-9"
        assert record.action == "overdue_penalty"
        assert record.extra == {"penalty": "979.80"}

    @pytest.mark.parametrize("fmt,formatter", [("json", JSONFormatter), ("text", logging.Formatter)])
    def test_setup_logging(self, fmt, formatter):
        logger = setup_logging("debug", logger_name="test.setup", fmt=fmt)
        setup_logging("debug", logger_name="test.setup", fmt=fmt)

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert type(logger.handlers[0].formatter) is formatter
        assert logger.propagate is False
