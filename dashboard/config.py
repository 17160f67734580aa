"""
Dashboard Configuration.

HTTP bind address and feed size, loaded from defaults or the
environment (a .env file is honored).
"""

import os
from dataclasses import dataclass
from typing import Any, Dict

from dotenv import load_dotenv


@dataclass
class DashboardConfig:
    """HTTP API configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    max_blocks: int = 20

    def __post_init__(self) -> None:
        """Validate settings."""
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.max_blocks <= 0:
            raise ValueError("max_blocks must be positive")

    @classmethod
    def from_env(cls) -> "DashboardConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - DASHBOARD_HOST
        - DASHBOARD_PORT
        - DASHBOARD_MAX_BLOCKS
        """
        load_dotenv()
        return cls(
            host=os.getenv("DASHBOARD_HOST", "127.0.0.1"),
            port=int(os.getenv("DASHBOARD_PORT", "8000")),
            max_blocks=int(os.getenv("DASHBOARD_MAX_BLOCKS", "20")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "max_blocks": self.max_blocks,
        }
