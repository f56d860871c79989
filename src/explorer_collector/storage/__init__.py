"""Storage — ORM rows, record mapping and the idempotent entity store."""

from explorer_collector.storage.store import Collection, EntityStore

__all__ = ["Collection", "EntityStore"]
