"""FastAPI dependency injection helpers.

Usage in a route::

    @router.get("/search/{identifier}")
    async def search(
        identifier: str,
        resolver: Annotated[IdentifierResolver, Depends(get_resolver)],
    ) -> ...:
        ...
"""

from __future__ import annotations

from fastapi import Request

from explorer_collector.collector import Collector  # noqa: TC001
from explorer_collector.errors.definitions import ErrNotInitialized
from explorer_collector.search.resolver import IdentifierResolver  # noqa: TC001


def get_collector(request: Request) -> Collector:
    """Retrieve the collector from ``app.state``.

    Raises:
        CollectorError: 503 if the store has not been opened yet.
    """
    collector: Collector | None = getattr(request.app.state, "collector", None)
    if collector is None or not collector.is_open:
        raise ErrNotInitialized
    return collector


def get_resolver(request: Request) -> IdentifierResolver:
    """The identifier resolver of the running collector."""
    return get_collector(request).resolver
