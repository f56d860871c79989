"""Search endpoint — resolve an identifier to its canonical entity path."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from explorer_collector.api.dependencies import get_resolver
from explorer_collector.errors.definitions import ErrNotFound
from explorer_collector.search.resolver import IdentifierResolver  # noqa: TC001

router = APIRouter(tags=["search"])


class SearchResponse(BaseModel):
    """Where the searched entity lives."""

    redirect: str


@router.get("/search/{identifier}", response_model=SearchResponse)
async def search(
    identifier: str,
    resolver: Annotated[IdentifierResolver, Depends(get_resolver)],
) -> SearchResponse:
    """Resolve an address, hash, reward id, layer or epoch number."""
    resolution = await resolver.resolve(identifier)
    if resolution is None:
        raise ErrNotFound
    return SearchResponse(redirect=resolution.redirect)
