"""Datastore — async SQLAlchemy engine and session management."""

from explorer_collector.datastore.client import Datastore

__all__ = ["Datastore"]
