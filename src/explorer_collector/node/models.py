"""Node data models — immutable snapshots returned by the node API.

Data classes representing layers, blocks, transactions, rewards,
activations and account states as of a requested layer height. The same
records are what :class:`~explorer_collector.storage.store.EntityStore`
accepts and returns; the ORM rows never leave the storage package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def _pick(data: dict[str, Any], camel: str, snake: str, default: Any) -> Any:
    """Read a field in either camelCase (gateway JSON) or snake_case form."""
    value = data.get(camel, data.get(snake, default))
    return default if value is None else value


# ---------------------------------------------------------------------------
# Node status & network constants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeStatus:
    """Node sync progress.

    Attributes:
        top_layer: Highest layer the node has processed (safe to ingest).
        current_layer: Layer of the wall-clock tick.
        connected_peers: Number of peers.
        is_synced: Whether the node considers itself synced.
    """

    top_layer: int = 0
    current_layer: int = 0
    connected_peers: int = 0
    is_synced: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeStatus:
        """Create from node JSON response."""
        return cls(
            top_layer=int(_pick(data, "topLayer", "top_layer", 0)),
            current_layer=int(_pick(data, "currentLayer", "current_layer", 0)),
            connected_peers=int(_pick(data, "connectedPeers", "connected_peers", 0)),
            is_synced=bool(_pick(data, "isSynced", "is_synced", False)),
        )


@dataclass(frozen=True)
class NetworkInfo:
    """Network-wide constants."""

    layers_per_epoch: int
    hrp: str = "sm"
    genesis_id: str = ""
    genesis_time: int = 0
    layer_duration: int = 0
    effective_genesis: int = 0
    labels_per_unit: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NetworkInfo:
        """Create from node JSON response."""
        return cls(
            layers_per_epoch=int(_pick(data, "layersPerEpoch", "layers_per_epoch", 0)),
            hrp=str(_pick(data, "hrp", "hrp", "sm")),
            genesis_id=str(_pick(data, "genesisId", "genesis_id", "")),
            genesis_time=int(_pick(data, "genesisTime", "genesis_time", 0)),
            layer_duration=int(_pick(data, "layerDuration", "layer_duration", 0)),
            effective_genesis=int(_pick(data, "effectiveGenesis", "effective_genesis", 0)),
            labels_per_unit=int(_pick(data, "labelsPerUnit", "labels_per_unit", 0)),
        )


# ---------------------------------------------------------------------------
# Chain entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Block:
    """A block proposed in a layer."""

    id: str
    layer: int
    tx_ids: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, layer: int) -> Block:
        """Create from node JSON response."""
        return cls(
            id=str(data["id"]),
            layer=int(_pick(data, "layer", "layer", layer)),
            tx_ids=tuple(_pick(data, "txIds", "tx_ids", [])),
        )


@dataclass(frozen=True)
class Layer:
    """A layer and the ids of the blocks it contains."""

    number: int
    timestamp: int = 0
    hash: str = ""
    status: str = ""
    blocks: tuple[Block, ...] = ()

    @property
    def block_ids(self) -> list[str]:
        """Ids of the layer's blocks in node order."""
        return [block.id for block in self.blocks]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Layer:
        """Create from node JSON response."""
        number = int(data["number"])
        return cls(
            number=number,
            timestamp=int(_pick(data, "timestamp", "timestamp", 0)),
            hash=str(_pick(data, "hash", "hash", "")),
            status=str(_pick(data, "status", "status", "")),
            blocks=tuple(Block.from_dict(b, layer=number) for b in data.get("blocks", [])),
        )


@dataclass(frozen=True)
class Transaction:
    """A transaction included in a layer."""

    id: str
    layer: int
    sender: str = ""
    recipient: str = ""
    amount: int = 0
    fee: int = 0
    counter: int = 0
    status: str = ""
    block_id: str = ""
    timestamp: int = 0

    @property
    def addresses(self) -> set[str]:
        """Accounts whose state this transaction touches."""
        return {a for a in (self.sender, self.recipient) if a}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Create from node JSON response."""
        return cls(
            id=str(data["id"]),
            layer=int(data["layer"]),
            sender=str(_pick(data, "principal", "sender", "")),
            recipient=str(_pick(data, "recipient", "recipient", "")),
            amount=int(_pick(data, "amount", "amount", 0)),
            fee=int(_pick(data, "fee", "fee", 0)),
            counter=int(_pick(data, "counter", "counter", 0)),
            status=str(_pick(data, "status", "status", "")),
            block_id=str(_pick(data, "blockId", "block_id", "")),
            timestamp=int(_pick(data, "timestamp", "timestamp", 0)),
        )


@dataclass(frozen=True)
class Reward:
    """A layer reward paid to a smesher's coinbase.

    ``id`` is empty until the store has assigned an object id.
    """

    layer: int
    smesher_id: str
    coinbase: str = ""
    total: int = 0
    layer_reward: int = 0
    timestamp: int = 0
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reward:
        """Create from node JSON response."""
        return cls(
            layer=int(data["layer"]),
            smesher_id=str(_pick(data, "smesher", "smesher_id", "")),
            coinbase=str(_pick(data, "coinbase", "coinbase", "")),
            total=int(_pick(data, "total", "total", 0)),
            layer_reward=int(_pick(data, "layerReward", "layer_reward", 0)),
            timestamp=int(_pick(data, "timestamp", "timestamp", 0)),
        )


@dataclass(frozen=True)
class Activation:
    """An activation (ATX) published by a smesher."""

    id: str
    smesher_id: str
    layer: int
    coinbase: str = ""
    publish_epoch: int = 0
    num_units: int = 0
    commitment_size: int = 0
    received: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activation:
        """Create from node JSON response."""
        return cls(
            id=str(data["id"]),
            smesher_id=str(_pick(data, "smesherId", "smesher_id", "")),
            layer=int(data["layer"]),
            coinbase=str(_pick(data, "coinbase", "coinbase", "")),
            publish_epoch=int(_pick(data, "publishEpoch", "publish_epoch", 0)),
            num_units=int(_pick(data, "numUnits", "num_units", 0)),
            commitment_size=int(_pick(data, "commitmentSize", "commitment_size", 0)),
            received=int(_pick(data, "received", "received", 0)),
        )


@dataclass(frozen=True)
class AccountState:
    """Balance/nonce snapshot of an address at ``layer``."""

    address: str
    balance: int = 0
    nonce: int = 0
    layer: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, layer: int = 0) -> AccountState:
        """Create from node JSON response."""
        return cls(
            address=str(data["address"]),
            balance=int(_pick(data, "balance", "balance", 0)),
            nonce=int(_pick(data, "nonce", "nonce", 0)),
            layer=int(_pick(data, "layer", "layer", layer)),
        )


@dataclass(frozen=True)
class Smesher:
    """Smesher identity with its mutable attributes."""

    id: str
    coinbase: str = ""
    commitment_size: int = 0
    atx_count: int = 0
    timestamp: int = 0


@dataclass(frozen=True)
class LayerBundle:
    """Everything the node returns for one layer."""

    layer: Layer
    transactions: tuple[Transaction, ...] = ()
    rewards: tuple[Reward, ...] = ()
    activations: tuple[Activation, ...] = ()

    @property
    def touched_addresses(self) -> list[str]:
        """Addresses whose account snapshot must be refreshed, sorted."""
        addresses: set[str] = set()
        for tx in self.transactions:
            addresses |= tx.addresses
        addresses.update(r.coinbase for r in self.rewards if r.coinbase)
        return sorted(addresses)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LayerBundle:
        """Create from the node's layer JSON response."""
        return cls(
            layer=Layer.from_dict(data["layer"]),
            transactions=tuple(Transaction.from_dict(t) for t in data.get("transactions", [])),
            rewards=tuple(Reward.from_dict(r) for r in data.get("rewards", [])),
        )
