"""Error types for the explorer collector."""

from explorer_collector.errors.collector_errors import (
    CollectorError,
    FatalStartupError,
    NodeError,
    StoreError,
    StoreTimeoutError,
)

__all__ = [
    "CollectorError",
    "FatalStartupError",
    "NodeError",
    "StoreError",
    "StoreTimeoutError",
]
