"""Identifier resolution for the search endpoint."""

from explorer_collector.search.resolver import ID_SHAPES, Category, IdentifierResolver, Resolution

__all__ = ["ID_SHAPES", "Category", "IdentifierResolver", "Resolution"]
