"""
Throughput Aggregation - Windowing Math.

============================================================
PURE FUNCTIONS
============================================================

Shared by the per-chain and global aggregators so both apply
the identical algorithm:

- windowed_tps:  extrinsics per second over the observed span,
                 capped at the target window
- ema:           exponential moving average, seeded with the
                 first value
- instant_tps:   single-block throughput from block time
- confidence:    [0, 1] trust heuristic from span and sample count
- prune_by_age:  age-based pruning anchored to a sample timestamp

Every function returns 0 instead of dividing by zero and never
returns a negative or NaN value.

============================================================
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import BlockSample


@dataclass(frozen=True)
class WindowResult:
    """Outcome of one windowed TPS computation."""
    tps: float = 0.0
    span_ms: int = 0
    sample_count: int = 0


def windowed_tps(samples: Iterable[BlockSample], target_window_ms: int) -> WindowResult:
    """
    Compute windowed TPS over a set of samples.

    span = min(newest - oldest, target_window_ms); samples whose
    timestamp falls within span of the newest are summed and divided
    by span. Fewer than 2 samples or a zero span yields 0.

    Block time is ignored in favor of wall-clock spacing between
    observed samples.
    """
    ordered = sorted(samples, key=lambda s: s.timestamp)
    count = len(ordered)
    if count < 2:
        return WindowResult(sample_count=count)

    newest = ordered[-1].timestamp
    span = min(newest - ordered[0].timestamp, target_window_ms)
    if span <= 0:
        return WindowResult(sample_count=count)

    cutoff = newest - span
    total = sum(s.extrinsics for s in ordered if s.timestamp >= cutoff)
    tps = max(0.0, (total * 1000.0) / span)
    return WindowResult(tps=tps, span_ms=span, sample_count=count)


def ema(value: float, previous: Optional[float], alpha: float) -> float:
    """Exponential moving average; previous=None seeds with value."""
    if previous is None:
        return value
    return alpha * value + (1.0 - alpha) * previous


def instant_tps(
    extrinsics: int,
    block_time: float,
    block_time_known: bool,
    epsilon: float,
) -> float:
    """Single-block TPS; an unknown block time yields 0."""
    if not block_time_known or block_time <= 0:
        return 0.0
    return max(0.0, extrinsics / max(block_time, epsilon))


def confidence(
    span_ms: int,
    target_window_ms: int,
    update_count: int,
    min_data_points: int,
) -> float:
    """
    Average of time confidence and data-point confidence.

    time = min(span / target_window, 1)
    data = min(update_count / min_data_points, 1)
    """
    time_confidence = min(max(span_ms, 0) / target_window_ms, 1.0)
    data_confidence = min(max(update_count, 0) / min_data_points, 1.0)
    return min(max((time_confidence + data_confidence) / 2.0, 0.0), 1.0)


def prune_by_age(
    samples: Iterable[BlockSample],
    anchor_ms: int,
    retention_ms: int,
) -> List[BlockSample]:
    """Keep samples no older than retention_ms before anchor_ms, order preserved."""
    cutoff = anchor_ms - retention_ms
    return [s for s in samples if s.timestamp >= cutoff]
