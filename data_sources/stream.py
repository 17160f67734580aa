"""
Event Stream Data Source - Server-sent events over aiohttp.

============================================================
PURPOSE
============================================================
Connects to the telemetry server's event stream and forwards
every named update event to the aggregator.

FEATURES:
- Incremental SSE parsing (event/data/id/retry, comments,
  multi-line data, CRLF)
- Automatic reconnection with capped exponential backoff,
  seeded by the server's retry field when it sends one
- No reconnection after a 4xx response other than 408/429
- Reconnect budget reset after every successful connection
- Idempotent stop that always closes the response and session

============================================================
USAGE
============================================================
```python
source = StreamDataSource(aggregator, StreamConfig.testnet())
await source.start()
...
await source.stop()
```

============================================================
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from aggregation import Aggregator

from .base import DataSource
from .config import StreamConfig
from .exceptions import ReconnectExhaustedError, StreamConnectionError
from .models import ConnectionState, ServerSentEvent


logger = logging.getLogger(__name__)


# ============================================================
# SSE PARSER
# ============================================================

class SSEParser:
    """
    Line-oriented server-sent events parser.

    Feed it lines (or arbitrary text chunks); it returns events as
    they are completed by a blank line.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._data_lines: List[str] = []
        self._event: Optional[str] = None
        self._last_id: Optional[str] = None
        self._retry_ms: Optional[int] = None

    @property
    def retry_ms(self) -> Optional[int]:
        """Last reconnection time sent by the server, if any."""
        return self._retry_ms

    def feed(self, chunk: str) -> List[ServerSentEvent]:
        """Feed a text chunk that may contain partial lines."""
        self._buffer += chunk
        events = []
        while True:
            index = self._buffer.find("\n")
            if index < 0:
                break
            line = self._buffer[:index]
            self._buffer = self._buffer[index + 1:]
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_line(self, line: str) -> Optional[ServerSentEvent]:
        """Feed exactly one line, with or without its terminator."""
        line = line.rstrip("\r\n")

        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            self._last_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry_ms = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data_lines:
            self._event = None
            return None

        event = ServerSentEvent(
            data="\n".join(self._data_lines),
            event=self._event or "message",
            id=self._last_id,
            retry_ms=self._retry_ms,
        )
        self._data_lines = []
        self._event = None
        return event


# ============================================================
# STREAM DATA SOURCE
# ============================================================

class StreamDataSource(DataSource):
    """
    Telemetry transport over a server-sent event stream.

    A single background task reads the stream and delivers each
    matching event to the aggregator, so ingest calls never overlap.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        config: Optional[StreamConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        name: str = "event_stream",
    ) -> None:
        super().__init__(aggregator, name)
        self._config = config or StreamConfig()
        self._session = session
        self._owns_session = session is None

        self._state = ConnectionState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._reconnect_count = 0
        self._last_error: Optional[Exception] = None
        self._server_retry_ms: Optional[int] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start reading the stream in the background."""
        if self._running:
            return

        self._running = True
        self._reconnect_count = 0
        self._task = asyncio.create_task(self._run())
        logger.info(f"[{self.name}] Started stream source for {self._config.url}")

    async def stop(self) -> None:
        """Stop reading and close the connection. Safe to call repeatedly."""
        if not self._running and self._task is None and self._session is None:
            return

        self._running = False
        self._state = ConnectionState.CLOSING

        if self._task:
            if not self._task.done():
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self._close_session()
        self._state = ConnectionState.STOPPED
        self._reconnect_count = 0
        logger.info(f"[{self.name}] Stream source stopped")

    async def wait(self) -> None:
        """Wait until the background reader finishes."""
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _close_session(self) -> None:
        if self._session is not None and self._owns_session:
            if not self._session.closed:
                await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    sock_connect=self._config.connect_timeout_seconds,
                ),
            )
            self._owns_session = True
        return self._session

    # --------------------------------------------------------
    # CONNECTION LOOP
    # --------------------------------------------------------

    async def _run(self) -> None:
        """Read the stream, reconnecting with backoff until stopped or exhausted."""
        try:
            while self._running:
                try:
                    await self._consume()
                    if self._running:
                        logger.warning(f"[{self.name}] Event stream closed by server")
                except (aiohttp.ClientError, asyncio.TimeoutError, StreamConnectionError) as e:
                    self._last_error = e
                    logger.error(f"[{self.name}] EventSource error: {e}")
                    if isinstance(e, StreamConnectionError) and not e.is_retryable:
                        logger.error(f"[{self.name}] Not reconnecting after {e.status_code} response")
                        break

                self._state = ConnectionState.DISCONNECTED
                if not self._running or not self._config.reconnect:
                    break

                if self._reconnect_count >= self._config.max_reconnect_attempts:
                    self._last_error = ReconnectExhaustedError(
                        attempts=self._reconnect_count,
                        last_error=self._last_error,
                        source_name=self.name,
                    )
                    logger.error(
                        f"[{self.name}] Max reconnection attempts reached. "
                        f"Giving up after {self._reconnect_count} attempts."
                    )
                    break

                self._reconnect_count += 1
                delay_ms = self._config.backoff_ms(self._reconnect_count, self._server_retry_ms)
                self._state = ConnectionState.RECONNECTING
                logger.info(
                    f"[{self.name}] Attempting to reconnect in {delay_ms}ms "
                    f"(attempt {self._reconnect_count})"
                )
                await asyncio.sleep(delay_ms / 1000)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = e
            logger.error(f"[{self.name}] Stream reader failed: {type(e).__name__}: {e}")
        finally:
            self._running = False
            self._state = ConnectionState.DISCONNECTED
            await self._close_session()

    async def _consume(self) -> None:
        """Open the stream once and process it until it ends."""
        session = await self._get_session()
        self._state = ConnectionState.CONNECTING

        async with session.get(
            self._config.url,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        ) as response:
            if response.status != 200:
                raise StreamConnectionError(
                    self._config.url,
                    status_code=response.status,
                    source_name=self.name,
                )

            self._state = ConnectionState.CONNECTED
            self._reconnect_count = 0
            logger.info(f"[{self.name}] Connected to event source")

            parser = SSEParser()
            async for raw_line in response.content:
                if not self._running:
                    break
                event = parser.feed_line(raw_line.decode("utf-8", errors="replace"))
                if parser.retry_ms:
                    self._server_retry_ms = parser.retry_ms
                if event is not None:
                    self._handle_event(event)

    def _handle_event(self, event: ServerSentEvent) -> None:
        """Forward update events; ignore everything else."""
        if event.event != self._config.event_name:
            logger.debug(f"[{self.name}] Ignoring event '{event.event}'")
            return
        self._deliver(event.data)

    def get_health_status(self):
        """Get data source health status."""
        status = super().get_health_status()
        status.update({
            "url": self._config.url,
            "state": self._state.value,
            "reconnect_count": self._reconnect_count,
            "last_error": str(self._last_error) if self._last_error else None,
        })
        return status
