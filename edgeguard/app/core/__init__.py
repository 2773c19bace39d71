"""Core utilities for the edge filter."""

from edgeguard.app.core.config import Settings, settings
from edgeguard.app.core.logging import get_logger, setup_logging
from edgeguard.app.core.store import create_redis_client, ping_store

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "create_redis_client",
    "ping_store",
]
