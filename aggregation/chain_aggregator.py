"""
Throughput Aggregation - Per-Chain Aggregator.

============================================================
RESPONSIBILITY
============================================================
Owns one chain's rolling block history and derives its metrics.

On every update:
1. Append a BlockSample (arrival order, size-bounded)
2. Prune samples older than the retention window, measured
   against the newest sample timestamp (never wall clock)
3. Recompute windowed TPS
4. Fold windowed TPS into the EMA
5. Compute instantaneous TPS from the newest block alone
6. Add the block's extrinsics to the running total

Duplicate blocks are accepted as separate samples.

============================================================
"""

import logging
from collections import deque
from dataclasses import replace
from typing import Deque, List, Optional

from .config import AggregationConfig
from .models import BlockSample, ChainState, NormalizedUpdate
from .windowing import ema, instant_tps, prune_by_age, windowed_tps


logger = logging.getLogger(__name__)


class ChainAggregator:
    """
    Rolling-window aggregator for a single (relay, para id) chain.

    Not thread-safe on its own; the global Aggregator serializes
    all calls.
    """

    def __init__(
        self,
        chain_id: str,
        name: str,
        para_id: int,
        relay: str,
        config: Optional[AggregationConfig] = None,
    ) -> None:
        self._config = config or AggregationConfig()
        self._history: Deque[BlockSample] = deque(maxlen=self._config.max_history)
        self._ema: Optional[float] = None
        self._state = ChainState(
            chain_id=chain_id,
            name=name,
            para_id=para_id,
            relay=relay,
        )

    @classmethod
    def for_update(
        cls,
        update: NormalizedUpdate,
        config: Optional[AggregationConfig] = None,
    ) -> "ChainAggregator":
        """Create the aggregator for the chain an update belongs to."""
        return cls(
            chain_id=update.chain_id,
            name=update.name,
            para_id=update.para_id,
            relay=update.relay,
            config=config,
        )

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def chain_id(self) -> str:
        return self._state.chain_id

    @property
    def state(self) -> ChainState:
        """Current immutable snapshot."""
        return self._state

    @property
    def samples(self) -> List[BlockSample]:
        """Retained samples in arrival order."""
        return list(self._history)

    @property
    def newest_timestamp(self) -> Optional[int]:
        if not self._history:
            return None
        return max(s.timestamp for s in self._history)

    # =========================================================
    # UPDATES
    # =========================================================

    def apply_update(self, chain_id: str, update: NormalizedUpdate) -> ChainState:
        """
        Apply one normalized update and return the new snapshot.

        Args:
            chain_id: Composite id the caller routed this update to
            update: Normalized update for this chain

        Returns:
            New ChainState

        Raises:
            ValueError: If the update is routed to the wrong chain
        """
        if chain_id != self.chain_id or update.chain_id != self.chain_id:
            raise ValueError(
                f"Update for {update.chain_id} routed to {chain_id}, "
                f"aggregator owns {self.chain_id}"
            )

        self._history.append(BlockSample.from_update(update))
        self._prune(self.newest_timestamp)

        window = windowed_tps(self._history, self._config.target_window_ms)
        self._ema = ema(window.tps, self._ema, self._config.ema_alpha)

        previous = self._state
        self._state = ChainState(
            chain_id=previous.chain_id,
            name=previous.name,
            para_id=previous.para_id,
            relay=previous.relay,
            block_number=update.block_number,
            extrinsics=update.extrinsics,
            block_time=update.block_time,
            timestamp=update.timestamp,
            weight=update.weight,
            accumulated_extrinsics=previous.accumulated_extrinsics + update.extrinsics,
            windowed_tps=window.tps,
            ema_tps=self._ema,
            instant_tps=instant_tps(
                update.extrinsics,
                update.block_time,
                update.block_time_known,
                self._config.instant_epsilon_seconds,
            ),
            peak_tps=max(previous.peak_tps, window.tps),
            history=tuple(self._history),
        )
        return self._state

    def prune(self, now_ms: int) -> ChainState:
        """
        Periodic cleanup against a reference time.

        Drops samples older than the retention window relative to
        now_ms and refreshes windowed TPS. EMA, instant TPS and totals
        are left untouched.
        """
        before = len(self._history)
        self._prune(now_ms)
        if len(self._history) == before:
            return self._state

        window = windowed_tps(self._history, self._config.target_window_ms)
        self._state = replace(
            self._state,
            windowed_tps=window.tps,
            history=tuple(self._history),
        )
        logger.debug(
            f"Pruned {before - len(self._history)} stale samples from {self.chain_id}"
        )
        return self._state

    def _prune(self, anchor_ms: Optional[int]) -> None:
        if anchor_ms is None:
            return
        kept = prune_by_age(self._history, anchor_ms, self._config.retention_ms)
        if len(kept) != len(self._history):
            self._history = deque(kept, maxlen=self._config.max_history)
