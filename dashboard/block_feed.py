"""
Dashboard - Live Block Feed.

============================================================
RESPONSIBILITY
============================================================
Subscribes to aggregator snapshots and keeps the newest blocks
seen across all chains, newest first.

- Each block is reported once, keyed by "<chain_id>-<timestamp>"
- Bounded to max_blocks entries
- Optional relay filter
============================================================
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set

from aggregation import GlobalState


logger = logging.getLogger(__name__)


DEFAULT_MAX_BLOCKS = 20


@dataclass(frozen=True)
class FeedBlock:
    """One block shown in the feed."""

    id: str
    chain_id: str
    name: str
    para_id: int
    relay: str
    block_number: int
    extrinsics: int
    block_time: float
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "chain_id": self.chain_id,
            "name": self.name,
            "para_id": self.para_id,
            "relay": self.relay,
            "block_number": self.block_number,
            "extrinsics": self.extrinsics,
            "block_time": self.block_time,
            "timestamp": self.timestamp,
        }


class BlockFeed:
    """
    Snapshot subscriber producing a de-duplicated live block feed.

    Register with `aggregator.subscribe(feed)`; read with `feed.blocks()`.
    """

    def __init__(
        self,
        max_blocks: int = DEFAULT_MAX_BLOCKS,
        relay: Optional[str] = None,
        max_seen: int = 10_000,
    ) -> None:
        if max_blocks <= 0:
            raise ValueError("max_blocks must be positive")
        self._max_blocks = max_blocks
        self._relay = relay
        self._blocks: Deque[FeedBlock] = deque(maxlen=max_blocks)
        self._seen: Set[str] = set()
        self._seen_order: Deque[str] = deque()
        self._max_seen = max(max_seen, max_blocks)
        self._lock = threading.Lock()

    @property
    def relay(self) -> Optional[str]:
        return self._relay

    def __call__(self, state: GlobalState) -> None:
        self.update(state)

    def update(self, state: GlobalState) -> int:
        """Pick up the latest block of every chain; returns how many were new."""
        fresh: List[FeedBlock] = []
        with self._lock:
            for chain in state.chains.values():
                if self._relay is not None and chain.relay != self._relay:
                    continue
                sample = chain.latest_sample
                if sample is None:
                    continue

                block_id = f"{chain.chain_id}-{sample.timestamp}"
                if block_id in self._seen:
                    continue

                fresh.append(FeedBlock(
                    id=block_id,
                    chain_id=chain.chain_id,
                    name=chain.name,
                    para_id=chain.para_id,
                    relay=chain.relay,
                    block_number=sample.block_number,
                    extrinsics=sample.extrinsics,
                    block_time=sample.block_time,
                    timestamp=sample.timestamp,
                ))
                self._remember(block_id)

            # Oldest first so the newest ends up at the front
            fresh.sort(key=lambda block: (block.timestamp, block.id))
            for block in fresh:
                self._blocks.appendleft(block)

        return len(fresh)

    def _remember(self, block_id: str) -> None:
        self._seen.add(block_id)
        self._seen_order.append(block_id)
        while len(self._seen_order) > self._max_seen:
            self._seen.discard(self._seen_order.popleft())

    def blocks(self) -> List[FeedBlock]:
        """Newest first."""
        with self._lock:
            return list(self._blocks)

    def clear(self) -> None:
        with self._lock:
            self._blocks.clear()
            self._seen.clear()
            self._seen_order.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocks)
