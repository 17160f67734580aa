"""
Throughput Aggregation - Configuration.

============================================================
CONFIGURABLE WINDOWING & CONFIDENCE
============================================================

All aggregation constants are configuration, not magic numbers:
- TPS target window and history retention
- History size bound
- EMA smoothing constant
- Confidence inputs and threshold
- Supported relays
- Cleanup cadence

Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honored)

============================================================
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_SUPPORTED_RELAYS: Tuple[str, ...] = ("Polkadot", "Kusama")


# =============================================================
# ENV HELPERS
# =============================================================


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer",
            config_key=name,
            expected_value="integer",
            actual_value=raw,
        )


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number",
            config_key=name,
            expected_value="number",
            actual_value=raw,
        )


def _env_csv(name: str) -> Optional[Tuple[str, ...]]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class AggregationConfig:
    """
    Configuration for the throughput aggregation engine.

    - target_window_ms:   span over which windowed TPS is computed
    - retention_ms:       history age bound, defaults to twice the target window
    - max_history:        per-chain history size bound
    - ema_alpha:          smoothing constant; higher reacts faster but is noisier
    - min_data_points:    update count at which the data-point half of
                          confidence saturates
    - confidence_threshold: gate for record-high tracking
    """
    # Windowing
    target_window_ms: int = 30_000
    retention_ms: Optional[int] = None
    max_history: int = 100

    # Smoothing
    ema_alpha: float = 0.2

    # Confidence
    min_data_points: int = 50
    confidence_threshold: float = 0.9

    # Instantaneous TPS floor for the block-time divisor
    instant_epsilon_seconds: float = 0.001

    # Filtering
    supported_relays: Tuple[str, ...] = DEFAULT_SUPPORTED_RELAYS

    # Subtracted from each block's extrinsic count. Policy knob for excluding
    # inherent extrinsics; 0 means count everything.
    mandatory_extrinsics_offset: int = 0

    # Housekeeping
    cleanup_interval_seconds: float = 60.0
    active_chain_threshold_ms: int = 18_000

    def __post_init__(self) -> None:
        """Resolve derived defaults and validate."""
        if self.retention_ms is None:
            self.retention_ms = 2 * self.target_window_ms
        self.supported_relays = tuple(self.supported_relays)
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.target_window_ms <= 0:
            raise ConfigurationError(
                "target_window_ms must be positive",
                config_key="target_window_ms",
                actual_value=str(self.target_window_ms),
            )
        if self.retention_ms < self.target_window_ms:
            raise ConfigurationError(
                "retention_ms must be >= target_window_ms",
                config_key="retention_ms",
                expected_value=f">= {self.target_window_ms}",
                actual_value=str(self.retention_ms),
            )
        if self.max_history < 2:
            raise ConfigurationError(
                "max_history must be at least 2",
                config_key="max_history",
                actual_value=str(self.max_history),
            )
        if not 0 < self.ema_alpha <= 1:
            raise ConfigurationError(
                "ema_alpha must be in (0, 1]",
                config_key="ema_alpha",
                actual_value=str(self.ema_alpha),
            )
        if self.min_data_points <= 0:
            raise ConfigurationError(
                "min_data_points must be positive",
                config_key="min_data_points",
                actual_value=str(self.min_data_points),
            )
        if not 0 <= self.confidence_threshold <= 1:
            raise ConfigurationError(
                "confidence_threshold must be in [0, 1]",
                config_key="confidence_threshold",
                actual_value=str(self.confidence_threshold),
            )
        if self.instant_epsilon_seconds <= 0:
            raise ConfigurationError(
                "instant_epsilon_seconds must be positive",
                config_key="instant_epsilon_seconds",
                actual_value=str(self.instant_epsilon_seconds),
            )
        if self.mandatory_extrinsics_offset < 0:
            raise ConfigurationError(
                "mandatory_extrinsics_offset must be >= 0",
                config_key="mandatory_extrinsics_offset",
                actual_value=str(self.mandatory_extrinsics_offset),
            )
        if self.cleanup_interval_seconds <= 0:
            raise ConfigurationError(
                "cleanup_interval_seconds must be positive",
                config_key="cleanup_interval_seconds",
                actual_value=str(self.cleanup_interval_seconds),
            )
        if not self.supported_relays:
            raise ConfigurationError(
                "supported_relays must not be empty",
                config_key="supported_relays",
            )

    def is_supported_relay(self, relay: str) -> bool:
        """Check whether updates from a relay are ingested."""
        return relay in self.supported_relays

    @classmethod
    def from_env(cls) -> "AggregationConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - TPS_TARGET_WINDOW_MS
        - TPS_RETENTION_MS
        - TPS_MAX_HISTORY
        - TPS_EMA_ALPHA
        - TPS_MIN_DATA_POINTS
        - TPS_CONFIDENCE_THRESHOLD
        - TPS_INSTANT_EPSILON_SECONDS
        - TPS_SUPPORTED_RELAYS (comma separated)
        - TPS_MANDATORY_EXTRINSICS_OFFSET
        - TPS_CLEANUP_INTERVAL_SECONDS
        - TPS_ACTIVE_CHAIN_THRESHOLD_MS
        """
        load_dotenv()

        values: Dict[str, Any] = {
            "target_window_ms": _env_int("TPS_TARGET_WINDOW_MS"),
            "retention_ms": _env_int("TPS_RETENTION_MS"),
            "max_history": _env_int("TPS_MAX_HISTORY"),
            "ema_alpha": _env_float("TPS_EMA_ALPHA"),
            "min_data_points": _env_int("TPS_MIN_DATA_POINTS"),
            "confidence_threshold": _env_float("TPS_CONFIDENCE_THRESHOLD"),
            "instant_epsilon_seconds": _env_float("TPS_INSTANT_EPSILON_SECONDS"),
            "supported_relays": _env_csv("TPS_SUPPORTED_RELAYS"),
            "mandatory_extrinsics_offset": _env_int("TPS_MANDATORY_EXTRINSICS_OFFSET"),
            "cleanup_interval_seconds": _env_float("TPS_CLEANUP_INTERVAL_SECONDS"),
            "active_chain_threshold_ms": _env_int("TPS_ACTIVE_CHAIN_THRESHOLD_MS"),
        }

        config = cls(**{k: v for k, v in values.items() if v is not None})
        logger.debug(f"Loaded aggregation config: {config.to_dict()}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_window_ms": self.target_window_ms,
            "retention_ms": self.retention_ms,
            "max_history": self.max_history,
            "ema_alpha": self.ema_alpha,
            "min_data_points": self.min_data_points,
            "confidence_threshold": self.confidence_threshold,
            "instant_epsilon_seconds": self.instant_epsilon_seconds,
            "supported_relays": list(self.supported_relays),
            "mandatory_extrinsics_offset": self.mandatory_extrinsics_offset,
            "cleanup_interval_seconds": self.cleanup_interval_seconds,
            "active_chain_threshold_ms": self.active_chain_threshold_ms,
        }
