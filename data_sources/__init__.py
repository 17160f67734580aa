"""
Data Sources Package - Telemetry transports feeding the aggregator.

Provides interchangeable sources for per-block parachain telemetry.

Features:
- Common start/stop contract (DataSource)
- Live and testnet event streams over aiohttp with reconnect backoff
- Offline surge simulator for demos and tests

Quick Start:
    from aggregation import Aggregator
    from data_sources import StreamConfig, StreamDataSource

    async def run():
        aggregator = Aggregator()
        source = StreamDataSource(aggregator, StreamConfig.live())
        await source.start()
        ...
        await source.stop()

Adding New Sources:
    1. Create class extending DataSource
    2. Implement: start(), stop()
    3. Call self._deliver(payload) for every received update
"""

from data_sources.base import DataSource
from data_sources.config import (
    DEFAULT_EVENT_NAME,
    LIVE_STREAM_URL,
    TESTNET_STREAM_URL,
    StreamConfig,
)
from data_sources.exceptions import (
    DataSourceError,
    ReconnectExhaustedError,
    StreamConnectionError,
)
from data_sources.models import ConnectionState, ServerSentEvent
from data_sources.mock import MockDataSource, SurgePhase
from data_sources.stream import SSEParser, StreamDataSource


__all__ = [
    # Base
    "DataSource",

    # Config
    "StreamConfig",
    "LIVE_STREAM_URL",
    "TESTNET_STREAM_URL",
    "DEFAULT_EVENT_NAME",

    # Models
    "ConnectionState",
    "ServerSentEvent",

    # Exceptions
    "DataSourceError",
    "StreamConnectionError",
    "ReconnectExhaustedError",

    # Sources
    "SSEParser",
    "StreamDataSource",
    "MockDataSource",
    "SurgePhase",
]
