"""
Throughput Aggregation Module.

============================================================
STREAMING TPS ENGINE
============================================================

Ingests unordered, possibly bursty per-block telemetry from
many parachains and maintains:

- A bounded, age-pruned block history per chain
- Windowed, EMA-smoothed and instantaneous TPS per chain
- A global windowed TPS over the pooled samples of all chains
- A [0, 1] confidence score for the global estimate

Snapshots are immutable and republished to subscribers after
every accepted update.

============================================================
USAGE
============================================================

```python
from aggregation import Aggregator, AggregationConfig

aggregator = Aggregator(AggregationConfig(target_window_ms=30_000))
aggregator.subscribe(render)

for event in stream:
    aggregator.ingest(event.data)

state = aggregator.get_state()
if state.is_confident(aggregator.config.confidence_threshold):
    print(f"{state.windowed_tps:.1f} TPS across {state.chain_count} chains")
```

============================================================
"""

from .models import (
    BlockSample,
    ChainState,
    GlobalState,
    NormalizedUpdate,
    make_chain_id,
)
from .config import AggregationConfig
from .exceptions import (
    AggregationError,
    ConfigurationError,
    NormalizationError,
)
from .registry import ChainRegistry
from .normalizer import UpdateNormalizer
from .windowing import WindowResult, confidence, ema, instant_tps, windowed_tps
from .chain_aggregator import ChainAggregator
from .aggregator import Aggregator, StateCallback


__all__ = [
    # Models
    "BlockSample",
    "ChainState",
    "GlobalState",
    "NormalizedUpdate",
    "make_chain_id",
    # Config
    "AggregationConfig",
    # Exceptions
    "AggregationError",
    "ConfigurationError",
    "NormalizationError",
    # Components
    "ChainRegistry",
    "UpdateNormalizer",
    "ChainAggregator",
    "Aggregator",
    "StateCallback",
    # Math
    "WindowResult",
    "windowed_tps",
    "ema",
    "instant_tps",
    "confidence",
]
