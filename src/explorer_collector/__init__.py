"""Explorer collector — layer-by-layer ledger indexer and search service."""

from __future__ import annotations

__version__ = "0.1.0"
