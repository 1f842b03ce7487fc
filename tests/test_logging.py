"""Tests for structlog configuration with the stdlib bridge."""

import json
import logging
import uuid

import pytest
import structlog

from workshop_metrics.core.config import Settings, get_settings
from workshop_metrics.core.logging import configure_structlog, request_context

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    for handler in root.handlers[:]:
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


def _last_json_line(output: str) -> dict:
    lines = [line for line in output.splitlines() if line.strip()]
    return json.loads(lines[-1])


def test_json_logs_include_bound_context(capsys, restore_logging):
    """Context bound with contextvars appears in every JSON entry."""
    configure_structlog("INFO", json_logs=True)
    logger = structlog.get_logger("workshop_metrics.test")

    with structlog.contextvars.bound_contextvars(request_id="req-1"):
        logger.info("window_aggregated", window="today", vehicles=3)

    entry = _last_json_line(capsys.readouterr().out)
    assert entry["event"] == "window_aggregated"
    assert entry["request_id"] == "req-1"
    assert entry["vehicles"] == 3
    assert entry["level"] == "info"
    assert entry["logger"] == "workshop_metrics.test"
    assert "timestamp" in entry


def test_stdlib_loggers_are_rendered_as_json(capsys, restore_logging):
    configure_structlog("INFO", json_logs=True)
    logging.getLogger("some.library").warning("disk almost full")

    entry = _last_json_line(capsys.readouterr().out)
    assert entry["event"] == "disk almost full"
    assert entry["level"] == "warning"


def test_level_filtering(capsys, restore_logging):
    configure_structlog("WARNING", json_logs=True)
    structlog.get_logger("workshop_metrics.test").info("hidden")
    assert capsys.readouterr().out == ""


def test_console_renderer_in_dev_mode(capsys, restore_logging):
    configure_structlog("DEBUG", json_logs=False)
    structlog.get_logger("workshop_metrics.test").debug("stage_event_skipped", position=2)
    output = capsys.readouterr().out
    assert "stage_event_skipped" in output
    assert "position" in output


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.business_timezone == "Asia/Kolkata"
    assert settings.dashboard_windows == ["today", "thisWeek", "thisMonth", "lastMonth"]
    assert settings.unknown_performer == "Unknown"
    assert settings.log_level == "INFO"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("BUSINESS_TIMEZONE", "UTC")
    monkeypatch.setenv("DASHBOARD_WINDOWS", '["today"]')
    settings = Settings(_env_file=None)
    assert settings.business_timezone == "UTC"
    assert settings.dashboard_windows == ["today"]


def test_defaults_come_from_settings(capsys, monkeypatch, restore_logging):
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    monkeypatch.setenv("DEBUG", "false")
    get_settings.cache_clear()
    try:
        configure_structlog()
        structlog.get_logger("workshop_metrics.test").warning("below_threshold")
        structlog.get_logger("workshop_metrics.test").error("vehicle_fetch_failed")
    finally:
        get_settings.cache_clear()

    output = capsys.readouterr().out
    assert "below_threshold" not in output
    assert _last_json_line(output)["event"] == "vehicle_fetch_failed"


class TestRequestContext:
    @pytest.fixture(autouse=True)
    def clean_context(self):
        structlog.contextvars.clear_contextvars()
        yield
        structlog.contextvars.clear_contextvars()

    def test_binds_request_id_and_operation(self):
        with request_context("live_status") as request_id:
            bound = structlog.contextvars.get_contextvars()

        assert bound == {"request_id": request_id, "operation": "live_status"}
        assert uuid.UUID(request_id)
        assert structlog.contextvars.get_contextvars() == {}

    def test_explicit_request_id(self):
        with request_context("stage_board", request_id="req-7") as request_id:
            assert request_id == "req-7"
            assert structlog.contextvars.get_contextvars()["request_id"] == "req-7"

    def test_outer_request_id_is_reused(self):
        with structlog.contextvars.bound_contextvars(request_id="outer"):
            with request_context("dashboard_metrics") as request_id:
                assert request_id == "outer"
            assert structlog.contextvars.get_contextvars() == {"request_id": "outer"}

    def test_entries_carry_operation(self, capsys, restore_logging):
        configure_structlog("INFO", json_logs=True)

        with request_context("vehicle_summary", request_id="req-9"):
            structlog.get_logger("workshop_metrics.test").info("vehicle_summary_computed")

        entry = _last_json_line(capsys.readouterr().out)
        assert entry["request_id"] == "req-9"
        assert entry["operation"] == "vehicle_summary"
