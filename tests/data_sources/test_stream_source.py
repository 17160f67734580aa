"""
Event Stream Source Tests.

============================================================
PURPOSE
============================================================
Tests for SSE parsing and the aiohttp stream source.

TEST CATEGORIES:
- Parser: fields, multi-line data, comments, CRLF, chunking
- Delivery: event filtering, subscriber failures
- Reconnection: backoff schedule, attempt budget, server retry,
  statuses that are not retried, unexpected reader failures
- Lifecycle: start/stop idempotency, session ownership

No network access: the HTTP layer is replaced with mocks.

============================================================
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from aggregation import Aggregator
from aggregation.exceptions import ConfigurationError
from data_sources import (
    ConnectionState,
    ReconnectExhaustedError,
    SSEParser,
    ServerSentEvent,
    StreamConfig,
    StreamConnectionError,
    StreamDataSource,
)


UPDATE = {
    "relay": "Polkadot",
    "para_id": 2004,
    "block_number": 1,
    "extrinsics_num": 12,
    "block_time_seconds": 6.0,
    "timestamp": 1000,
}


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def aggregator():
    return Aggregator()


@pytest.fixture
def config():
    return StreamConfig(
        url="http://stream.test/events",
        max_reconnect_attempts=3,
        reconnect_interval_ms=100,
        max_reconnect_interval_ms=250,
    )


@pytest.fixture
def source(aggregator, config):
    return StreamDataSource(aggregator, config, name="test_stream")


class FakeContent:
    """Async iterator over raw stream lines."""

    def __init__(self, lines):
        self._lines = [line.encode("utf-8") for line in lines]

    def __aiter__(self):
        self._iter = iter(self._lines)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


def fake_session(status=200, lines=()):
    response = MagicMock()
    response.status = status
    response.content = FakeContent(lines)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.get = MagicMock(return_value=context)
    session.close = AsyncMock()
    return session


# ============================================================
# PARSER TESTS
# ============================================================

class TestSSEParser:
    """Tests for SSEParser."""

    def test_named_event(self):
        parser = SSEParser()

        assert parser.feed_line("event: consumptionUpdate") is None
        assert parser.feed_line('data: {"a": 1}') is None
        event = parser.feed_line("")

        assert event == ServerSentEvent(data='{"a": 1}', event="consumptionUpdate")

    def test_default_event_name(self):
        parser = SSEParser()
        parser.feed_line("data: hello")

        assert parser.feed_line("").event == "message"

    def test_multiline_data(self):
        parser = SSEParser()
        parser.feed_line("data: first")
        parser.feed_line("data: second")

        assert parser.feed_line("").data == "first\nsecond"

    def test_comments_ignored(self):
        parser = SSEParser()
        parser.feed_line(": keep-alive")

        assert parser.feed_line("") is None

    def test_crlf_lines(self):
        parser = SSEParser()
        parser.feed_line("event: x\r\n")
        parser.feed_line("data: y\r\n")
        event = parser.feed_line("\r\n")

        assert event.event == "x"
        assert event.data == "y"

    def test_id_and_retry(self):
        parser = SSEParser()
        parser.feed_line("id: 42")
        parser.feed_line("retry: 5000")
        parser.feed_line("data: z")
        event = parser.feed_line("")

        assert event.id == "42"
        assert event.retry_ms == 5000
        assert parser.retry_ms == 5000

    def test_event_name_reset_after_dispatch(self):
        parser = SSEParser()
        parser.feed_line("event: special")
        parser.feed_line("data: 1")
        parser.feed_line("")
        parser.feed_line("data: 2")

        assert parser.feed_line("").event == "message"

    def test_chunked_feed(self):
        parser = SSEParser()
        events = parser.feed("event: a\ndata: 1")
        assert events == []

        events = parser.feed("23\n\ndata: 4\n\n")

        assert [e.data for e in events] == ["123", "4"]
        assert events[0].event == "a"


# ============================================================
# DELIVERY TESTS
# ============================================================

class TestDelivery:
    """Tests for forwarding events to the aggregator."""

    def test_matching_event_ingested(self, source, aggregator):
        source._handle_event(ServerSentEvent(data=json.dumps(UPDATE), event="consumptionUpdate"))

        assert aggregator.get_state().update_count == 1
        assert source.get_health_status()["messages_received"] == 1

    def test_other_events_ignored(self, source, aggregator):
        source._handle_event(ServerSentEvent(data=json.dumps(UPDATE), event="heartbeat"))

        assert aggregator.get_state().update_count == 0

    def test_subscriber_failure_does_not_escape(self, source, aggregator):
        aggregator.subscribe(MagicMock(side_effect=RuntimeError("render failed")))

        source._handle_event(ServerSentEvent(data=json.dumps(UPDATE), event="consumptionUpdate"))

        assert source.get_health_status()["messages_failed"] == 1
        assert aggregator.get_state().update_count == 1

    @pytest.mark.asyncio
    async def test_consume_reads_stream(self, aggregator, config):
        session = fake_session(lines=[
            "event: consumptionUpdate\n",
            f"data: {json.dumps(UPDATE)}\n",
            "\n",
        ])
        source = StreamDataSource(aggregator, config, session=session)
        source._running = True

        await source._consume()

        assert aggregator.get_state().update_count == 1
        assert source.state == ConnectionState.CONNECTED
        headers = session.get.call_args.kwargs["headers"]
        assert headers["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_consume_rejects_bad_status(self, aggregator, config):
        source = StreamDataSource(aggregator, config, session=fake_session(status=503))
        source._running = True

        with pytest.raises(StreamConnectionError) as exc_info:
            await source._consume()

        assert exc_info.value.status_code == 503
        assert exc_info.value.is_retryable


# ============================================================
# RECONNECTION TESTS
# ============================================================

class TestReconnect:
    """Tests for the reconnect loop."""

    def test_backoff_schedule(self):
        config = StreamConfig(reconnect_interval_ms=1000, max_reconnect_interval_ms=30_000)

        assert [config.backoff_ms(n) for n in range(1, 8)] == [
            1000, 2000, 4000, 8000, 16000, 30000, 30000,
        ]

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, source):
        source._running = True
        failure = aiohttp.ClientConnectionError("refused")

        with patch.object(source, "_consume", AsyncMock(side_effect=failure)) as consume, \
                patch("data_sources.stream.asyncio.sleep", AsyncMock()) as sleep:
            await source._run()

        assert consume.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2, 0.25]
        assert isinstance(source.last_error, ReconnectExhaustedError)
        assert source.last_error.attempts == 3
        assert not source.is_running

    @pytest.mark.asyncio
    async def test_successful_connect_resets_budget(self, source):
        source._running = True
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] == 3:
                # Connected, then the server hung up
                source._reconnect_count = 0
                return
            raise aiohttp.ClientConnectionError("refused")

        with patch.object(source, "_consume", side_effect=flaky), \
                patch("data_sources.stream.asyncio.sleep", AsyncMock()):
            await source._run()

        # 2 failures, 1 connect, then a fresh budget of 3 retries
        assert calls["n"] == 6

    @pytest.mark.asyncio
    async def test_no_reconnect_when_disabled(self, aggregator):
        config = StreamConfig(url="http://stream.test/events", reconnect=False)
        source = StreamDataSource(aggregator, config)
        source._running = True

        with patch.object(source, "_consume", AsyncMock(side_effect=asyncio.TimeoutError())) as consume:
            await source._run()

        assert consume.await_count == 1
        assert source.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_client_error_status_not_retried(self, aggregator, config):
        session = fake_session(status=404)
        source = StreamDataSource(aggregator, config, session=session)
        source._running = True

        with patch("data_sources.stream.asyncio.sleep", AsyncMock()) as sleep:
            await source._run()

        assert session.get.call_count == 1
        sleep.assert_not_awaited()
        assert isinstance(source.last_error, StreamConnectionError)
        assert source.last_error.status_code == 404
        assert not source.is_running

    @pytest.mark.asyncio
    async def test_server_error_status_retried(self, aggregator, config):
        session = fake_session(status=503)
        source = StreamDataSource(aggregator, config, session=session)
        source._running = True

        with patch("data_sources.stream.asyncio.sleep", AsyncMock()):
            await source._run()

        assert session.get.call_count == 4
        assert isinstance(source.last_error, ReconnectExhaustedError)

    @pytest.mark.asyncio
    async def test_unexpected_error_ends_reader_cleanly(self, source):
        session = fake_session()
        source._session = session
        source._owns_session = True
        source._running = True

        with patch.object(source, "_consume", AsyncMock(side_effect=ValueError("Line is too long"))):
            await source._run()

        assert isinstance(source.last_error, ValueError)
        assert not source.is_running
        assert source.state == ConnectionState.DISCONNECTED
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_server_retry_seeds_backoff(self, aggregator, config):
        session = fake_session(lines=["retry: 40\n", "\n"])
        source = StreamDataSource(aggregator, config, session=session)
        source._running = True

        def stop_after_first_sleep(delay):
            source._running = False

        with patch("data_sources.stream.asyncio.sleep", AsyncMock(side_effect=stop_after_first_sleep)) as sleep:
            await source._run()

        assert sleep.await_args.args[0] == pytest.approx(0.04)

    def test_backoff_from_server_base(self, config):
        assert [config.backoff_ms(n, base_ms=40) for n in range(1, 5)] == [40, 80, 160, 250]


# ============================================================
# LIFECYCLE TESTS
# ============================================================

class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_stop_before_start(self, source):
        await source.stop()

        assert not source.is_running

    @pytest.mark.asyncio
    async def test_start_then_stop_twice(self, source):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(3600)

        with patch.object(source, "_consume", side_effect=hang):
            await source.start()
            await source.start()
            await started.wait()
            assert source.is_running

            await source.stop()
            await source.stop()

        assert not source.is_running
        assert source.state == ConnectionState.STOPPED

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, aggregator, config):
        session = fake_session()
        source = StreamDataSource(aggregator, config, session=session)

        await source.start()
        await source.stop()

        session.close.assert_not_called()

    def test_config_rejects_bad_backoff(self):
        with pytest.raises(ValueError):
            StreamConfig(reconnect_interval_ms=1000, max_reconnect_interval_ms=10)

    def test_config_env_must_be_integer(self, monkeypatch):
        monkeypatch.setenv("STREAM_RECONNECT_INTERVAL_MS", "soon")

        with pytest.raises(ConfigurationError, match="STREAM_RECONNECT_INTERVAL_MS"):
            StreamConfig.from_env()

    def test_named_configs(self):
        assert StreamConfig.live().url == "https://stream.freeside.network/events"
        assert StreamConfig.testnet().url == "https://status.freeside.network/events"
        assert StreamConfig.live().event_name == "consumptionUpdate"


# ============================================================
# EXCEPTION TESTS
# ============================================================

class TestExceptions:
    """Tests for transport errors."""

    @pytest.mark.parametrize("status,retryable", [
        (None, True),
        (503, True),
        (429, True),
        (404, False),
        (401, False),
    ])
    def test_retryable_status(self, status, retryable):
        error = StreamConnectionError("http://x/events", status_code=status)

        assert error.is_retryable is retryable

    def test_message_names_source(self):
        error = StreamConnectionError("http://x/events", status_code=502, source_name="live")

        assert str(error) == "[live] HTTP 502 from http://x/events"
        assert error.to_dict()["status_code"] == 502

    def test_exhausted_keeps_last_error(self):
        cause = aiohttp.ClientConnectionError("refused")
        error = ReconnectExhaustedError(attempts=5, last_error=cause)

        assert error.last_error is cause
        assert "5 reconnection attempts" in str(error)
        assert error.to_dict()["attempts"] == 5
