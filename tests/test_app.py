"""
Entry Point Tests.

============================================================
PURPOSE
============================================================
Tests for CLI parsing, validation and wiring in app.py.

============================================================
"""

import logging
from unittest.mock import patch

import pytest

import app
from aggregation import Aggregator, GlobalState
from data_sources import MockDataSource, StreamDataSource


# ============================================================
# PARSER TESTS
# ============================================================

class TestParser:
    """Tests for create_parser and validate_args."""

    def test_defaults(self):
        args = app.create_parser().parse_args([])

        assert args.source == "live"
        assert args.serve is False
        assert args.relay is None
        assert args.summary_every == 100
        assert app.validate_args(args) == []

    def test_repeatable_relay(self):
        args = app.create_parser().parse_args(["--relay", "Kusama", "--relay", "Westend"])

        assert args.relay == ["Kusama", "Westend"]

    def test_unknown_source_rejected(self):
        with pytest.raises(SystemExit):
            app.create_parser().parse_args(["--source", "carrier-pigeon"])

    @pytest.mark.parametrize("argv", [
        ["--summary-every", "-1"],
        ["--port", "70000"],
        ["--source", "mock", "--url", "http://x"],
        ["--relay", " "],
    ])
    def test_invalid_combinations(self, argv):
        args = app.create_parser().parse_args(argv)

        assert app.validate_args(args)

    def test_main_reports_errors(self, capsys):
        assert app.main(["--port", "0"]) == 1
        assert "Error:" in capsys.readouterr().err


# ============================================================
# WIRING TESTS
# ============================================================

class TestWiring:
    """Tests for config and source construction."""

    def test_relay_override(self):
        args = app.create_parser().parse_args(["--relay", "Westend"])

        config = app.build_aggregation_config(args)

        assert config.supported_relays == ("Westend",)

    def test_dashboard_override(self):
        args = app.create_parser().parse_args(["--host", "0.0.0.0", "--port", "9000"])

        config = app.build_dashboard_config(args)

        assert (config.host, config.port) == ("0.0.0.0", 9000)

    def test_mock_source(self):
        args = app.create_parser().parse_args(["--source", "mock", "--seed", "3"])

        assert isinstance(app.build_source(args, Aggregator()), MockDataSource)

    def test_testnet_source_with_url(self):
        args = app.create_parser().parse_args(["--source", "testnet", "--url", "http://local/events"])

        source = app.build_source(args, Aggregator())

        assert isinstance(source, StreamDataSource)
        assert source.get_health_status()["url"] == "http://local/events"

    def test_exits_when_source_finishes(self):
        async def finish_immediately(source):
            source._running = False

        with patch.object(StreamDataSource, "_run", finish_immediately):
            exit_code = app.main(["--url", "http://127.0.0.1:9/events", "--log-level", "ERROR"])

        assert exit_code == 0

    @pytest.mark.asyncio
    async def test_invalid_environment_exits_cleanly(self, monkeypatch):
        monkeypatch.setenv("TPS_EMA_ALPHA", "5")
        args = app.create_parser().parse_args(["--source", "mock"])

        assert await app.async_main(args) == 2

    def test_invalid_stream_environment_exits_cleanly(self, monkeypatch):
        monkeypatch.setenv("STREAM_MAX_RECONNECT_ATTEMPTS", "abc")

        assert app.main(["--source", "live", "--log-level", "ERROR"]) == 2


# ============================================================
# SUMMARY TESTS
# ============================================================

class TestSummaryLogger:
    """Tests for the periodic summary subscriber."""

    def test_logs_every_n(self, caplog):
        summary = app.SummaryLogger(every=2, confidence_threshold=0.9)

        with caplog.at_level(logging.INFO, logger="app"):
            summary(GlobalState(update_count=1))
            summary(GlobalState(update_count=2, windowed_tps=12.5))

        assert len(caplog.records) == 1
        assert "TPS 12.5" in caplog.text
        assert "warming up" in caplog.text

    def test_disabled(self, caplog):
        summary = app.SummaryLogger(every=0, confidence_threshold=0.9)

        with caplog.at_level(logging.INFO, logger="app"):
            summary(GlobalState(update_count=100))

        assert caplog.records == []

