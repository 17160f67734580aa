"""
Data Source Exceptions.

============================================================
HIERARCHY
============================================================
- DataSourceError: Base, carries the source name
- StreamConnectionError: The event stream could not be opened
  or answered with a non-200 status
- ReconnectExhaustedError: Reconnect budget spent, the source
  has given up

Transport failures stay inside the data source. They drive the
reconnect loop and end up in health status, never in the
aggregator.

============================================================
"""

from typing import Any, Dict, Optional


class DataSourceError(Exception):
    """Base exception for telemetry transports."""

    def __init__(self, message: str, source_name: Optional[str] = None) -> None:
        self.message = message
        self.source_name = source_name
        super().__init__(f"[{source_name}] {message}" if source_name else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for health reporting."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source_name": self.source_name,
        }


class StreamConnectionError(DataSourceError):
    """The event stream endpoint refused or failed the request."""

    def __init__(
        self,
        url: str,
        status_code: Optional[int] = None,
        source_name: Optional[str] = None,
    ) -> None:
        reason = f"HTTP {status_code}" if status_code is not None else "connection failed"
        super().__init__(f"{reason} from {url}", source_name)
        self.url = url
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        """A 4xx other than 408/429 will not fix itself by reconnecting."""
        if self.status_code is None or self.status_code >= 500:
            return True
        return self.status_code in (408, 429)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["url"] = self.url
        data["status_code"] = self.status_code
        return data


class ReconnectExhaustedError(DataSourceError):
    """Raised when the reconnect budget is spent."""

    def __init__(
        self,
        attempts: int,
        last_error: Optional[Exception] = None,
        source_name: Optional[str] = None,
    ) -> None:
        message = f"Gave up after {attempts} reconnection attempts"
        if last_error is not None:
            message += f" (last error: {last_error})"
        super().__init__(message, source_name)
        self.attempts = attempts
        self.last_error = last_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data
