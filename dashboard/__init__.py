"""
Dashboard Package.

Headless consumers of aggregator snapshots.

Modules:
- block_feed: de-duplicated live block feed subscriber
- api: read-only REST API (FastAPI)
- config: bind address and feed size
"""

from .block_feed import BlockFeed, FeedBlock
from .config import DashboardConfig
from .api import create_app


__all__ = [
    "BlockFeed",
    "FeedBlock",
    "DashboardConfig",
    "create_app",
]
