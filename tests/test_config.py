"""Tests for settings and logging configuration."""

import json
import logging

import pytest

from areaflow.config import (
    JSONFormatter,
    SanitizingFilter,
    Settings,
    TextFormatter,
    configure_logging,
)


class TestSettings:
    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ("AREAFLOW_LOG_LEVEL", "AREAFLOW_GITHUB_TOKEN", "AREAFLOW_DEFAULT_TIMEZONE"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = Settings()
        assert settings.default_timezone == "Europe/Paris"
        assert settings.dispatch_timeout_seconds == 30.0
        assert settings.processed_ids_cap == 100
        assert settings.pollers_enabled is True

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("AREAFLOW_DEFAULT_TIMEZONE", "UTC")
        monkeypatch.setenv("AREAFLOW_GITHUB_TOKEN", "ghp_env")
        settings = Settings()
        assert settings.default_timezone == "UTC"
        assert settings.github_token == "ghp_env"

    def test_yaml_source(self, tmp_path):
        (tmp_path / "areaflow.yaml").write_text("log_level: DEBUG\ngmail_max_results: 25\n")
        settings = Settings()
        assert settings.log_level == "DEBUG"
        assert settings.gmail_max_results == 25

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        (tmp_path / "areaflow.yaml").write_text("log_level: DEBUG\n")
        monkeypatch.setenv("AREAFLOW_LOG_LEVEL", "WARNING")
        assert Settings().log_level == "WARNING"

    def test_unresolved_placeholder_becomes_none(self, tmp_path):
        (tmp_path / "areaflow.yaml").write_text("github_token: ${GITHUB_TOKEN}\n")
        assert Settings().github_token is None

    def test_log_format_validated(self):
        assert Settings(log_format="JSON").log_format == "json"
        with pytest.raises(ValueError):
            Settings(log_format="xml")

    def test_poll_interval_lower_bound(self):
        with pytest.raises(ValueError):
            Settings(gmail_poll_interval_seconds=1)

    def test_cursor_cap_must_hold_gmail_window(self):
        with pytest.raises(ValueError, match="processed_ids_cap"):
            Settings(processed_ids_cap=3, gmail_max_results=5)
        assert Settings(processed_ids_cap=5, gmail_max_results=5).processed_ids_cap == 5


def _record(msg, args=None, **extra):
    record = logging.LogRecord("areaflow.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    def test_json_formatter_includes_extras(self):
        line = JSONFormatter().format(_record("Dispatched", rule_id="r1", status="success"))
        data = json.loads(line)
        assert data["message"] == "Dispatched"
        assert data["level"] == "INFO"
        assert data["rule_id"] == "r1"
        assert data["status"] == "success"
        assert "owner_id" not in data

    def test_text_formatter_appends_rule_context(self):
        line = TextFormatter().format(_record("Rule executed", rule_id="r1", owner_id="alice"))
        assert line.endswith("Rule executed [rule_id=r1 owner_id=alice]")

    def test_text_formatter_without_context(self):
        assert TextFormatter().format(_record("Engine started")).endswith("- Engine started")

    def test_sanitizing_filter_redacts_tokens(self):
        token = "ghp_" + "a" * 36
        record = _record(f"Using {token}", None)

        assert SanitizingFilter().filter(record) is True

        assert token not in record.getMessage()
        assert "[REDACTED_GITHUB_TOKEN]" in record.getMessage()

    def test_sanitizing_filter_redacts_args(self):
        record = _record("Header %s", ("Bearer " + "x" * 30,))
        SanitizingFilter().filter(record)
        assert record.getMessage() == "Header Bearer [REDACTED]"

    def test_configure_logging_json(self):
        configure_logging("DEBUG", "json")
        root = logging.getLogger()
        try:
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert any(isinstance(f, SanitizingFilter) for f in root.handlers[0].filters)
            assert logging.getLogger("apscheduler").level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
            root.setLevel(logging.WARNING)
