"""
Core Module Package.

This package contains the infrastructure components shared by
the aggregation engine, the data sources and the dashboard.

Components:
- clock: Unified, mockable time abstraction
"""

from .clock import ClockProtocol, MockClock, SystemClock


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
]
