"""
Throughput Aggregation - Update Normalizer.

============================================================
RESPONSIBILITY
============================================================
Validates and reshapes one raw telemetry record into a
NormalizedUpdate.

- Parses JSON text or accepts an already-decoded mapping
- Rejects malformed records with NormalizationError
- Filters relays that are not configured (returns None)
- Resolves the display name through the ChainRegistry
- Flags unknown block times so TPS math never divides by them
- Sums split weight components

============================================================
ACCEPTED WIRE SHAPES
============================================================
{
  "relay": "Kusama", "para_id": 2023, "block_number": 123,
  "extrinsics_num": 12, "block_time_seconds": 6.0,
  "timestamp": 1700000000000,

  "total_proof_size": 0.42                      # flat weight
  # or
  "proof_size": {"normal": 1, "operational": 2, "mandatory": 3},
  "ref_time":   {"normal": 1, "operational": 2, "mandatory": 3}
}

============================================================
"""

import json
import logging
import math
from typing import Any, Mapping, Optional, Tuple, Union

from .config import AggregationConfig
from .exceptions import NormalizationError
from .models import NormalizedUpdate, make_chain_id
from .registry import ChainRegistry


logger = logging.getLogger(__name__)


RawPayload = Union[str, bytes, bytearray, Mapping[str, Any]]

WEIGHT_COMPONENTS: Tuple[str, ...] = ("normal", "operational", "mandatory")

PROOF_SIZE_FLAT_KEYS: Tuple[str, ...] = ("total_proof_size", "weight")
REF_TIME_FLAT_KEYS: Tuple[str, ...] = ("total_ref_time",)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_float(value: Any, field_name: str) -> float:
    """Convert a JSON number (or numeric string) to a finite float."""
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise NormalizationError("not a number", field_name=field_name, value=value)
    if not _is_number(value):
        raise NormalizationError("not a number", field_name=field_name, value=value)
    try:
        result = float(value)
    except OverflowError:
        raise NormalizationError("out of range", field_name=field_name, value=value)
    if not math.isfinite(result):
        raise NormalizationError("not finite", field_name=field_name, value=value)
    return result


def _coerce_int(value: Any, field_name: str) -> int:
    result = _coerce_float(value, field_name)
    if not result.is_integer():
        raise NormalizationError("not an integer", field_name=field_name, value=value)
    return int(result)


class UpdateNormalizer:
    """
    Turns untrusted telemetry into canonical updates.

    ```python
    normalizer = UpdateNormalizer(config, ChainRegistry())
    update = normalizer.normalize(event_data)   # NormalizedUpdate | None
    ```
    """

    def __init__(
        self,
        config: Optional[AggregationConfig] = None,
        registry: Optional[ChainRegistry] = None,
    ) -> None:
        self._config = config or AggregationConfig()
        self._registry = registry or ChainRegistry()

    @property
    def registry(self) -> ChainRegistry:
        return self._registry

    # =========================================================
    # PUBLIC
    # =========================================================

    def normalize(self, raw: RawPayload) -> Optional[NormalizedUpdate]:
        """
        Normalize a single raw record.

        Args:
            raw: JSON text/bytes or a decoded mapping

        Returns:
            NormalizedUpdate, or None if the relay is filtered out

        Raises:
            NormalizationError: On malformed input
        """
        record = self._decode(raw)

        relay = record.get("relay")
        if not isinstance(relay, str) or not relay.strip():
            raise NormalizationError("missing or empty", field_name="relay", value=relay)
        relay = relay.strip()

        if not self._config.is_supported_relay(relay):
            logger.debug(f"Ignoring update for unsupported relay: {relay}")
            return None

        para_id = _coerce_int(self._require(record, "para_id"), "para_id")
        chain_id = make_chain_id(relay, para_id)

        try:
            block_number = _coerce_int(self._require(record, "block_number"), "block_number")
            extrinsics = _coerce_int(self._require(record, "extrinsics_num"), "extrinsics_num")
            timestamp = _coerce_int(self._require(record, "timestamp"), "timestamp")
            proof_size = self._weight_total(record, PROOF_SIZE_FLAT_KEYS, "proof_size")
            ref_time = self._weight_total(record, REF_TIME_FLAT_KEYS, "ref_time")
        except NormalizationError as e:
            e.chain_id = chain_id
            raise

        if extrinsics < 0:
            raise NormalizationError(
                "must be non-negative",
                field_name="extrinsics_num",
                value=extrinsics,
                chain_id=chain_id,
            )
        if timestamp < 0:
            raise NormalizationError(
                "must be non-negative",
                field_name="timestamp",
                value=timestamp,
                chain_id=chain_id,
            )

        offset = self._config.mandatory_extrinsics_offset
        if offset:
            extrinsics = max(0, extrinsics - offset)

        block_time, block_time_known = self._block_time(record.get("block_time_seconds"))

        return NormalizedUpdate(
            relay=relay,
            para_id=para_id,
            chain_id=chain_id,
            name=self._registry.display_name(relay, para_id),
            block_number=block_number,
            extrinsics=extrinsics,
            block_time=block_time,
            block_time_known=block_time_known,
            timestamp=timestamp,
            proof_size=proof_size,
            ref_time=ref_time,
        )

    # =========================================================
    # HELPERS
    # =========================================================

    @staticmethod
    def _decode(raw: RawPayload) -> Mapping[str, Any]:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise NormalizationError(f"payload is not UTF-8: {e}")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                # JSONDecodeError, or a number past the int digit limit
                raise NormalizationError(f"invalid JSON: {e}")
        if not isinstance(raw, Mapping):
            raise NormalizationError(f"expected an object, got {type(raw).__name__}")
        return raw

    @staticmethod
    def _require(record: Mapping[str, Any], field_name: str) -> Any:
        value = record.get(field_name)
        if value is None:
            raise NormalizationError("missing", field_name=field_name)
        return value

    @staticmethod
    def _block_time(value: Any) -> Tuple[float, bool]:
        """Block time in seconds; zero, negative, absent or garbage is unknown."""
        if value is None:
            return 0.0, False
        try:
            seconds = _coerce_float(value, "block_time_seconds")
        except NormalizationError:
            return 0.0, False
        if seconds <= 0:
            return 0.0, False
        return seconds, True

    @staticmethod
    def _weight_total(
        record: Mapping[str, Any],
        flat_keys: Tuple[str, ...],
        split_key: str,
    ) -> float:
        """Flat scalar wins; otherwise sum the split components (absent = 0)."""
        for key in flat_keys:
            value = record.get(key)
            if value is not None:
                return _coerce_float(value, key)

        split = record.get(split_key)
        if split is None:
            return 0.0
        if isinstance(split, Mapping):
            total = 0.0
            for component in WEIGHT_COMPONENTS:
                value = split.get(component)
                if value is not None:
                    total += _coerce_float(value, f"{split_key}.{component}")
            return total
        return _coerce_float(split, split_key)
