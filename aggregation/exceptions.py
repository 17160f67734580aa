"""
Throughput Aggregation - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the aggregation engine:
- AggregationError: Base exception
- NormalizationError: Raw telemetry record could not be normalized
- ConfigurationError: Invalid configuration

============================================================
FAILURE SAFETY
============================================================

- Ingestion must NEVER halt the stream
- A malformed record is dropped and logged, nothing more
- Division guards return zero instead of raising
- ConfigurationError is the only exception that escapes, and
  only at construction time

============================================================
"""

from typing import Any, Dict, Optional


def _short_repr(value: Any, limit: int = 200) -> str:
    try:
        return repr(value)[:limit]
    except ValueError:
        # ints past the str conversion digit limit
        return f"<{type(value).__name__} too large to display>"


class AggregationError(Exception):
    """
    Base exception for aggregation errors.

    All aggregation exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        chain_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            chain_id: Composite id of the affected chain, when known
            details: Additional error details
        """
        self.message = message
        self.chain_id = chain_id
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.chain_id:
            return f"[{self.chain_id}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "chain_id": self.chain_id,
            "details": self.details,
        }


class NormalizationError(AggregationError):
    """
    Raised when a raw telemetry record cannot be normalized.

    The record is dropped; processing continues with the next one.
    """

    def __init__(
        self,
        reason: str,
        field_name: Optional[str] = None,
        value: Any = None,
        chain_id: Optional[str] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            reason: Why normalization failed
            field_name: Offending field, if a single field is to blame
            value: The offending value
            chain_id: Composite chain id, if it could be derived
        """
        if field_name:
            message = f"Invalid field '{field_name}': {reason}"
        else:
            message = f"Malformed update: {reason}"

        details: Dict[str, Any] = {"reason": reason}
        if field_name:
            details["field"] = field_name
        if value is not None:
            details["value"] = _short_repr(value)

        super().__init__(
            message=message,
            chain_id=chain_id,
            details=details,
        )

        self.field_name = field_name


class ConfigurationError(AggregationError):
    """
    Raised when configuration is invalid.

    Should be caught at startup and fixed before ingesting.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_value: Optional[str] = None,
        actual_value: Optional[str] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            config_key: Which config key is invalid
            expected_value: What was expected
            actual_value: What was provided
        """
        details = {}
        if config_key:
            details["config_key"] = config_key
        if expected_value:
            details["expected"] = expected_value
        if actual_value:
            details["actual"] = actual_value

        super().__init__(
            message=message,
            details=details,
        )
