"""Tests for stepkit.core.logging module."""

import json

import structlog

from stepkit.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestConfigureLogging:
    def test_json_output_includes_service_and_level(self, capsys):
        configure_logging(level="INFO", json_format=True, service="stepkit-test")
        get_logger("tests").info("pipeline.step.complete", step="fetch")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "pipeline.step.complete"
        assert record["step"] == "fetch"
        assert record["level"] == "info"
        assert record["service"] == "stepkit-test"
        assert "timestamp" in record

    def test_level_filters_debug(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("tests").info("quiet")
        assert "quiet" not in capsys.readouterr().out

    def test_level_defaults_from_settings(self, monkeypatch, capsys):
        from stepkit.core.settings import reset_settings

        monkeypatch.setenv("STEPKIT_LOG_LEVEL", "ERROR")
        reset_settings()
        configure_logging(json_format=True)
        get_logger("tests").warning("filtered")
        assert "filtered" not in capsys.readouterr().out

    def teardown_method(self):
        clear_context()
        structlog.reset_defaults()


class TestContextBinding:
    def teardown_method(self):
        clear_context()

    def test_bind_and_unbind(self):
        bind_context(run_id="abc")
        assert structlog.contextvars.get_contextvars() == {"run_id": "abc"}
        unbind_context("run_id")
        assert structlog.contextvars.get_contextvars() == {}

    def test_log_context_restores_previous_values(self):
        bind_context(run_id="outer")
        with LogContext(run_id="inner", step="s"):
            assert structlog.contextvars.get_contextvars() == {"run_id": "inner", "step": "s"}
        assert structlog.contextvars.get_contextvars() == {"run_id": "outer"}
