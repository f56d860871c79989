"""Node API client and snapshot models."""

from explorer_collector.node.client import NodeClient

__all__ = ["NodeClient"]
