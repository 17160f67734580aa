"""
Throughput Aggregation - Global Aggregator.

============================================================
MAIN ENTRY POINT
============================================================

The Aggregator is the only object consumers call:
- ingest(raw) normalizes one record, updates its chain,
  recomputes the global metrics and notifies subscribers
- subscribe(callback) registers a snapshot listener
- cleanup() prunes idle chains against the clock
- start_background_cleanup() runs cleanup on a fixed timer

============================================================
GLOBAL METRICS
============================================================

- Windowed TPS:  every chain's retained samples pooled and run
                 through the per-chain windowing algorithm
- EMA TPS:       same alpha as the per-chain EMA
- Confidence:    (time confidence + data-point confidence) / 2
- Record TPS:    highest windowed TPS seen while confident

============================================================
CONCURRENCY
============================================================

Updates are applied strictly one at a time under a re-entrant
lock. Snapshots handed out are immutable and replaced wholesale.
Subscriber exceptions propagate to the caller of ingest.

============================================================
USAGE
============================================================

```python
aggregator = Aggregator(AggregationConfig.from_env())
aggregator.subscribe(lambda state: print(state.windowed_tps))

state = aggregator.ingest(event_data)
print(state.confidence, state.update_count)
```

============================================================
"""

import asyncio
import logging
import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock

from .chain_aggregator import ChainAggregator
from .config import AggregationConfig
from .exceptions import NormalizationError
from .models import ChainState, GlobalState
from .normalizer import RawPayload, UpdateNormalizer
from .registry import ChainRegistry
from .windowing import confidence, ema, windowed_tps


logger = logging.getLogger(__name__)


# =============================================================
# CALLBACK TYPES
# =============================================================

StateCallback = Callable[[GlobalState], None]


class Aggregator:
    """
    Streaming aggregation engine over all chains.

    ============================================================
    RESPONSIBILITIES
    ============================================================

    - Owns one ChainAggregator per composite chain id
    - Computes global windowed TPS, EMA and confidence
    - Publishes immutable GlobalState snapshots
    - Prunes idle chains on a timer

    ============================================================
    """

    def __init__(
        self,
        config: Optional[AggregationConfig] = None,
        registry: Optional[ChainRegistry] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        """
        Initialize the aggregator.

        Args:
            config: Aggregation configuration
            registry: Display-name registry
            clock: Clock used by periodic cleanup
        """
        self._config = config or AggregationConfig()
        self._normalizer = UpdateNormalizer(self._config, registry or ChainRegistry())
        self._clock = clock or SystemClock()
        self._lock = threading.RLock()

        self._chains: Dict[str, ChainAggregator] = {}
        self._state = GlobalState()
        self._global_ema: Optional[float] = None

        # Callbacks
        self._subscribers: List[StateCallback] = []

        # Statistics
        self._accepted = 0
        self._rejected = 0
        self._filtered = 0
        self._cleanups = 0

        # Background cleanup
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

        logger.info("Aggregator initialized")

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def config(self) -> AggregationConfig:
        return self._config

    @property
    def state(self) -> GlobalState:
        """Current immutable snapshot."""
        return self._state

    def get_state(self) -> GlobalState:
        """Current immutable snapshot."""
        return self._state

    def get_chain(self, chain_id: str) -> Optional[ChainState]:
        """Snapshot of one chain, or None if never seen."""
        return self._state.get_chain(chain_id)

    # =========================================================
    # SUBSCRIPTIONS
    # =========================================================

    def subscribe(self, callback: StateCallback) -> None:
        """Register a callback invoked with every new snapshot."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: StateCallback) -> bool:
        """Remove a callback. Returns True if it was registered."""
        with self._lock:
            try:
                self._subscribers.remove(callback)
                return True
            except ValueError:
                return False

    def _notify(self, state: GlobalState) -> None:
        for callback in list(self._subscribers):
            callback(state)

    # =========================================================
    # INGESTION
    # =========================================================

    def ingest(self, raw: RawPayload) -> GlobalState:
        """
        Ingest one raw telemetry record.

        Malformed records are dropped and logged; records for
        unsupported relays are ignored. In both cases the current
        snapshot is returned unchanged and nobody is notified.

        Args:
            raw: JSON text/bytes or decoded mapping

        Returns:
            The snapshot after this record
        """
        with self._lock:
            try:
                update = self._normalizer.normalize(raw)
            except NormalizationError as e:
                self._rejected += 1
                logger.warning(f"Dropping malformed update: {e}")
                return self._state

            if update is None:
                self._filtered += 1
                return self._state

            chain = self._chains.get(update.chain_id)
            if chain is None:
                chain = ChainAggregator.for_update(update, self._config)
                self._chains[update.chain_id] = chain
                logger.info(f"Registered chain: {update.chain_id} ({update.name})")

            chain.apply_update(update.chain_id, update)
            self._accepted += 1

            self._state = self._build_state(
                update_count=self._state.update_count + 1,
                advance_ema=True,
                last_timestamp=max(self._state.last_timestamp, update.timestamp),
            )
            self._notify(self._state)
            return self._state

    def _build_state(
        self,
        update_count: int,
        advance_ema: bool,
        last_timestamp: int,
    ) -> GlobalState:
        """Pool every chain's samples and derive the next snapshot."""
        pooled = [s for chain in self._chains.values() for s in chain.samples]
        window = windowed_tps(pooled, self._config.target_window_ms)

        if advance_ema:
            self._global_ema = ema(window.tps, self._global_ema, self._config.ema_alpha)

        score = confidence(
            window.span_ms,
            self._config.target_window_ms,
            update_count,
            self._config.min_data_points,
        )

        record = self._state.record_tps
        if score >= self._config.confidence_threshold:
            record = max(record, window.tps)

        return GlobalState(
            chains=MappingProxyType(
                {chain_id: chain.state for chain_id, chain in self._chains.items()}
            ),
            windowed_tps=window.tps,
            ema_tps=self._global_ema if self._global_ema is not None else 0.0,
            confidence=score,
            observed_span_ms=window.span_ms,
            update_count=update_count,
            record_tps=record,
            last_timestamp=last_timestamp,
        )

    # =========================================================
    # CLEANUP
    # =========================================================

    def cleanup(self, now_ms: Optional[int] = None) -> GlobalState:
        """
        Prune samples older than the retention window from every chain.

        Chain entries are kept; only their history shrinks. The
        snapshot is replaced without notifying subscribers and without
        counting as an update.

        Args:
            now_ms: Reference time (defaults to the clock)

        Returns:
            The snapshot after cleanup
        """
        now_ms = self._clock.now_ms() if now_ms is None else now_ms

        with self._lock:
            before = {cid: len(chain.state.history) for cid, chain in self._chains.items()}
            for chain in self._chains.values():
                chain.prune(now_ms)
            pruned = sum(
                before[cid] - len(chain.state.history)
                for cid, chain in self._chains.items()
            )
            self._cleanups += 1

            if pruned:
                self._state = self._build_state(
                    update_count=self._state.update_count,
                    advance_ema=False,
                    last_timestamp=self._state.last_timestamp,
                )
                logger.info(f"Cleanup pruned {pruned} stale samples")
            return self._state

    async def start_background_cleanup(self) -> None:
        """Start the periodic cleanup loop."""
        if self._running:
            return

        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Started background cleanup")

    async def stop_background_cleanup(self) -> None:
        """Stop the periodic cleanup loop. Safe to call repeatedly."""
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Stopped background cleanup")

    async def _cleanup_loop(self) -> None:
        """Background cleanup loop."""
        while self._running:
            try:
                await asyncio.sleep(self._config.cleanup_interval_seconds)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Background cleanup error: {e}")

    # =========================================================
    # DIAGNOSTICS
    # =========================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get ingestion statistics."""
        return {
            "accepted": self._accepted,
            "rejected": self._rejected,
            "filtered": self._filtered,
            "cleanups": self._cleanups,
            "chains": len(self._chains),
            "subscribers": len(self._subscribers),
            "cleanup_running": self._running,
        }
