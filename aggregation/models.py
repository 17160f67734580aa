"""
Throughput Aggregation - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Defines the data models of the aggregation engine:
- NormalizedUpdate: Canonical form of one raw telemetry record
- BlockSample: One retained block in a chain's history
- ChainState: Snapshot of a single chain
- GlobalState: Snapshot of every chain plus global metrics

============================================================
DESIGN PRINCIPLES
============================================================
- Every model is immutable (frozen dataclasses, tuples,
  read-only mappings)
- Snapshots are replaced, never mutated in place
- Serializable for the dashboard API and logs

============================================================
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


def make_chain_id(relay: str, para_id: int) -> str:
    """Build the composite chain id used as the state key."""
    return f"{relay}-{para_id}"


# =============================================================
# INPUT MODELS
# =============================================================


@dataclass(frozen=True)
class NormalizedUpdate:
    """Canonical update produced by the normalizer from one raw record."""
    relay: str
    para_id: int
    chain_id: str
    name: str
    block_number: int
    extrinsics: int
    block_time: float
    block_time_known: bool
    timestamp: int
    proof_size: float = 0.0
    ref_time: float = 0.0

    @property
    def weight(self) -> float:
        """Combined weight scalar carried into the chain state."""
        return self.proof_size


@dataclass(frozen=True)
class BlockSample:
    """Single retained block of a chain's history."""
    extrinsics: int
    timestamp: int
    block_time: float
    block_number: int
    weight: float = 0.0

    @classmethod
    def from_update(cls, update: NormalizedUpdate) -> "BlockSample":
        """Build a sample from a normalized update."""
        return cls(
            extrinsics=update.extrinsics,
            timestamp=update.timestamp,
            block_time=update.block_time,
            block_number=update.block_number,
            weight=update.weight,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "extrinsics": self.extrinsics,
            "timestamp": self.timestamp,
            "block_time": self.block_time,
            "block_number": self.block_number,
            "weight": self.weight,
        }


# =============================================================
# STATE SNAPSHOTS
# =============================================================


@dataclass(frozen=True)
class ChainState:
    """
    Snapshot of one (relay, para id) chain.

    accumulated_extrinsics only grows; windowed_tps and instant_tps
    are never negative.
    """
    # Identity
    chain_id: str
    name: str
    para_id: int
    relay: str

    # Latest observed block
    block_number: int = 0
    extrinsics: int = 0
    block_time: float = 0.0
    timestamp: int = 0
    weight: float = 0.0

    # Running totals
    accumulated_extrinsics: int = 0

    # Derived
    windowed_tps: float = 0.0
    ema_tps: float = 0.0
    instant_tps: float = 0.0
    peak_tps: float = 0.0

    # Retained samples, arrival order
    history: Tuple[BlockSample, ...] = ()

    @property
    def latest_sample(self) -> Optional[BlockSample]:
        """Most recently received sample, if any are retained."""
        return self.history[-1] if self.history else None

    def is_active(self, now_ms: int, threshold_ms: int) -> bool:
        """Check if the chain reported within threshold_ms of now_ms."""
        return self.timestamp > 0 and (now_ms - self.timestamp) <= threshold_ms

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for the API and logs."""
        data = {
            "id": self.chain_id,
            "name": self.name,
            "para_id": self.para_id,
            "relay": self.relay,
            "block_number": self.block_number,
            "extrinsics": self.extrinsics,
            "block_time": self.block_time,
            "timestamp": self.timestamp,
            "weight": self.weight,
            "accumulated_extrinsics": self.accumulated_extrinsics,
            "tps": self.windowed_tps,
            "tps_ema": self.ema_tps,
            "instant_tps": self.instant_tps,
            "peak_tps": self.peak_tps,
            "history_size": len(self.history),
        }
        if include_history:
            data["recent_blocks"] = [sample.to_dict() for sample in self.history]
        return data


def _empty_chain_map() -> Mapping[str, ChainState]:
    return MappingProxyType({})


@dataclass(frozen=True)
class GlobalState:
    """
    Complete externally observable snapshot.

    Replaced wholesale on every accepted update and handed to
    subscribers; the chain map is read-only.
    """
    chains: Mapping[str, ChainState] = field(default_factory=_empty_chain_map)
    windowed_tps: float = 0.0
    ema_tps: float = 0.0
    confidence: float = 0.0
    observed_span_ms: int = 0
    update_count: int = 0
    record_tps: float = 0.0
    last_timestamp: int = 0

    @property
    def chain_count(self) -> int:
        """Number of chains seen so far."""
        return len(self.chains)

    def get_chain(self, chain_id: str) -> Optional[ChainState]:
        """Get one chain's snapshot by composite id."""
        return self.chains.get(chain_id)

    def is_confident(self, threshold: float) -> bool:
        """Check whether confidence reaches a display threshold."""
        return self.confidence >= threshold

    def active_chains(self, now_ms: int, threshold_ms: int) -> List[ChainState]:
        """Chains that reported within threshold_ms of now_ms."""
        return [c for c in self.chains.values() if c.is_active(now_ms, threshold_ms)]

    def top_chains(
        self,
        limit: Optional[int] = None,
        relay: Optional[str] = None,
    ) -> List[ChainState]:
        """Leaderboard: chains sorted by windowed TPS, busiest first."""
        chains = [
            c for c in self.chains.values()
            if relay is None or c.relay == relay
        ]
        chains.sort(key=lambda c: (-c.windowed_tps, c.chain_id))
        return chains if limit is None else chains[:limit]

    def to_dict(self, include_chains: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for the API and logs."""
        data: Dict[str, Any] = {
            "total_tps": self.windowed_tps,
            "total_tps_ema": self.ema_tps,
            "confidence": self.confidence,
            "observed_span_ms": self.observed_span_ms,
            "data_points": self.update_count,
            "record_tps": self.record_tps,
            "last_timestamp": self.last_timestamp,
            "chain_count": self.chain_count,
        }
        if include_chains:
            data["chains"] = {
                chain_id: chain.to_dict() for chain_id, chain in self.chains.items()
            }
        return data
