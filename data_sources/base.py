"""
Base Data Source - Abstract interface for telemetry transports.

Every transport MUST implement this interface so the aggregator only
ever sees:
- start(): begin delivering updates
- stop():  release the transport; idempotent

Delivery is serialized: a transport hands one payload at a time to
Aggregator.ingest from a single task.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aggregation import Aggregator
from aggregation.normalizer import RawPayload


logger = logging.getLogger(__name__)


class DataSource(ABC):
    """
    Abstract base class for all telemetry transports.

    Subclasses implement start() and stop(); they call _deliver()
    for each received payload.
    """

    def __init__(self, aggregator: Aggregator, name: str) -> None:
        self._aggregator = aggregator
        self._name = name
        self._running = False

        # Metrics
        self._messages_received = 0
        self._messages_failed = 0
        self._last_message_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        """Unique identifier for this data source."""
        return self._name

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def aggregator(self) -> Aggregator:
        return self._aggregator

    @abstractmethod
    async def start(self) -> None:
        """Start delivering updates."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering updates and release the transport. Idempotent."""
        pass

    def _deliver(self, payload: RawPayload) -> None:
        """
        Hand one payload to the aggregator.

        The aggregator already drops malformed records; anything raised
        here comes from a subscriber and is logged so one failing
        consumer does not tear down the stream.
        """
        self._messages_received += 1
        self._last_message_at = datetime.now(timezone.utc)
        try:
            self._aggregator.ingest(payload)
        except Exception as e:
            self._messages_failed += 1
            logger.error(f"[{self.name}] Subscriber failed while handling update: {e}")

    def get_health_status(self) -> Dict[str, Any]:
        """Get data source health status."""
        return {
            "source": self.name,
            "running": self._running,
            "messages_received": self._messages_received,
            "messages_failed": self._messages_failed,
            "last_message_at": self._last_message_at.isoformat() if self._last_message_at else None,
        }
