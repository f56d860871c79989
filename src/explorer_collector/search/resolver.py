"""IdentifierResolver — classify an opaque search string into an entity.

Identifiers carry no type tag. They are classified by literal shape, in the
fixed order of :data:`ID_SHAPES`; within a shape the candidate collections
are checked in order and the first hit wins. Shapes with a fixed width that
nothing else shares are *terminal*: a miss there is final. Strings no shape
claims fall back to a decimal layer/epoch number, which is checked last.

Resolution is read-only.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from explorer_collector.storage.objectid import is_object_id
from explorer_collector.storage.store import Collection

if TYPE_CHECKING:
    from collections.abc import Callable

    from explorer_collector.config.settings import NetworkConfig
    from explorer_collector.storage.store import EntityStore

logger = logging.getLogger(__name__)

HASH_LENGTH = 66

_DECIMAL = re.compile(r"[+-]?[0-9]+")


class Category(enum.StrEnum):
    """Entity kinds a search can resolve to; the value is the redirect prefix."""

    ACCOUNT = "address"
    BLOCK = "blocks"
    TRANSACTION = "txs"
    ACTIVATION = "atxs"
    SMESHER = "smeshers"
    REWARD = "rewards"
    LAYER = "layers"
    EPOCH = "epochs"


@dataclass(frozen=True)
class Resolution:
    """A successful resolution."""

    category: Category
    target: str

    @property
    def redirect(self) -> str:
        """Canonical path of the resolved entity."""
        return f"/{self.category}/{self.target}"


@dataclass(frozen=True)
class IdShape:
    """One literal identifier shape and the collections it may name.

    Attributes:
        name: Shape label, for logs.
        matches: Predicate over ``(identifier, address_length)``.
        lookups: ``(category, collection)`` pairs checked in order.
        terminal: Whether a miss ends resolution instead of falling through.
        canonical: Spelling of a matched identifier used in the redirect.
    """

    name: str
    matches: Callable[[str, int], bool]
    lookups: tuple[tuple[Category, Collection], ...]
    terminal: bool
    canonical: Callable[[str], str] = str


ID_SHAPES: tuple[IdShape, ...] = (
    IdShape(
        name="address",
        matches=lambda identifier, address_length: len(identifier) == address_length,
        lookups=(
            (Category.ACCOUNT, Collection.ACCOUNTS),
            (Category.BLOCK, Collection.BLOCKS),
        ),
        terminal=True,
    ),
    IdShape(
        name="hash",
        matches=lambda identifier, _: len(identifier) == HASH_LENGTH,
        lookups=(
            (Category.TRANSACTION, Collection.TRANSACTIONS),
            (Category.ACTIVATION, Collection.ACTIVATIONS),
            (Category.SMESHER, Collection.SMESHERS),
        ),
        terminal=True,
    ),
    IdShape(
        name="object_id",
        matches=lambda identifier, _: is_object_id(identifier),
        lookups=((Category.REWARD, Collection.REWARDS),),
        terminal=False,
        canonical=str.lower,
    ),
)


class IdentifierResolver:
    """Resolves search identifiers against the store.

    Usage::

        resolver = IdentifierResolver(store, config.network)
        resolution = await resolver.resolve("42")
        if resolution is None:
            raise ErrNotFound
    """

    def __init__(self, store: EntityStore, network: NetworkConfig) -> None:
        self._store = store
        self._network = network

    async def resolve(self, identifier: str) -> Resolution | None:
        """Return the entity *identifier* names, or ``None`` if there is none.

        Raises:
            StoreTimeoutError: A lookup timed out.
        """
        for shape in ID_SHAPES:
            if not shape.matches(identifier, self._network.address_length):
                continue
            for category, collection in shape.lookups:
                if await self._store.exists(collection, identifier):
                    return Resolution(category, shape.canonical(identifier))
            if shape.terminal:
                logger.debug("No %s-shaped entity %r", shape.name, identifier)
                return None
        return await self._resolve_number(identifier)

    async def _resolve_number(self, identifier: str) -> Resolution | None:
        """Layer or epoch number, told apart by magnitude.

        Numbers up to the current epoch are epochs; larger numbers are
        layers as long as they have been synced.
        """
        if not _DECIMAL.fullmatch(identifier):
            return None
        number = int(identifier)
        if number < 0:
            return None

        watermark = await self._store.get_watermark()
        epoch = watermark // await self._layers_per_epoch()
        if number > epoch:
            if number <= watermark:
                return Resolution(Category.LAYER, str(number))
            return None
        return Resolution(Category.EPOCH, str(number))

    async def _layers_per_epoch(self) -> int:
        """Stored network constant, falling back to the configured one."""
        info = await self._store.get_network_info()
        if info is not None and info.layers_per_epoch > 0:
            return info.layers_per_epoch
        return self._network.layers_per_epoch
