"""
Data Source Configuration.

Stream endpoints and reconnect policy, loaded from defaults or the
environment (a .env file is honored).
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from aggregation.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


LIVE_STREAM_URL = "https://stream.freeside.network/events"
TESTNET_STREAM_URL = "https://status.freeside.network/events"
DEFAULT_EVENT_NAME = "consumptionUpdate"


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer",
            config_key=name,
            actual_value=raw,
        )


@dataclass
class StreamConfig:
    """Event stream configuration."""

    # Connection
    url: str = LIVE_STREAM_URL
    event_name: str = DEFAULT_EVENT_NAME
    connect_timeout_seconds: float = 30.0

    # Reconnection: delay doubles from reconnect_interval_ms up to the cap
    reconnect: bool = True
    max_reconnect_attempts: int = 5
    reconnect_interval_ms: int = 1000
    max_reconnect_interval_ms: int = 30000

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.url:
            raise ValueError("url must not be empty")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.reconnect_interval_ms <= 0:
            raise ValueError("reconnect_interval_ms must be positive")
        if self.max_reconnect_interval_ms < self.reconnect_interval_ms:
            raise ValueError("max_reconnect_interval_ms must be >= reconnect_interval_ms")

    def backoff_ms(self, attempt: int, base_ms: Optional[int] = None) -> int:
        """
        Delay before reconnect attempt number `attempt` (1-based).

        base_ms replaces reconnect_interval_ms as the starting delay,
        e.g. when the server has sent an SSE retry field.
        """
        base = self.reconnect_interval_ms if base_ms is None else base_ms
        return min(
            base * (2 ** max(attempt - 1, 0)),
            self.max_reconnect_interval_ms,
        )

    @classmethod
    def live(cls, **overrides: Any) -> "StreamConfig":
        """Production stream."""
        return cls(url=LIVE_STREAM_URL, **overrides)

    @classmethod
    def testnet(cls, **overrides: Any) -> "StreamConfig":
        """Testnet stream."""
        return cls(url=TESTNET_STREAM_URL, **overrides)

    @classmethod
    def from_env(cls) -> "StreamConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - STREAM_URL
        - STREAM_EVENT_NAME
        - STREAM_MAX_RECONNECT_ATTEMPTS
        - STREAM_RECONNECT_INTERVAL_MS
        - STREAM_MAX_RECONNECT_INTERVAL_MS
        """
        load_dotenv()

        values: Dict[str, Any] = {}
        if os.getenv("STREAM_URL"):
            values["url"] = os.getenv("STREAM_URL")
        if os.getenv("STREAM_EVENT_NAME"):
            values["event_name"] = os.getenv("STREAM_EVENT_NAME")
        for key, env_name in (
            ("max_reconnect_attempts", "STREAM_MAX_RECONNECT_ATTEMPTS"),
            ("reconnect_interval_ms", "STREAM_RECONNECT_INTERVAL_MS"),
            ("max_reconnect_interval_ms", "STREAM_MAX_RECONNECT_INTERVAL_MS"),
        ):
            value = _env_int(env_name)
            if value is not None:
                values[key] = value

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "url": self.url,
            "event_name": self.event_name,
            "reconnect": self.reconnect,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "reconnect_interval_ms": self.reconnect_interval_ms,
            "max_reconnect_interval_ms": self.max_reconnect_interval_ms,
        }
