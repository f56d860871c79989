"""Shared test fixtures for the explorer collector test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from explorer_collector.config.settings import (
    AppConfig,
    DatabaseConfig,
    DatabaseEngine,
    MetricsConfig,
    NetworkConfig,
    SyncConfig,
)
from explorer_collector.errors.collector_errors import NodeError
from explorer_collector.node.models import (
    AccountState,
    Activation,
    Block,
    Layer,
    LayerBundle,
    NetworkInfo,
    NodeStatus,
    Reward,
    Transaction,
)
from explorer_collector.storage.store import Collection

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from explorer_collector.datastore.client import Datastore
    from explorer_collector.storage.store import EntityStore

LAYERS_PER_EPOCH = 10
GENESIS_TIME = 1_700_000_000


# ---------------------------------------------------------------------------
# Deterministic chain data
# ---------------------------------------------------------------------------


def tx_id(n: int) -> str:
    return "0x1" + f"{n:063x}"


def atx_id(n: int) -> str:
    return "0x2" + f"{n:063x}"


def smesher_id(n: int) -> str:
    return "0x3" + f"{n:063x}"


def block_id(n: int) -> str:
    return "0x" + f"{n:040x}"


def address(n: int) -> str:
    return "sm1" + f"{n:039x}"


def make_bundle(n: int) -> LayerBundle:
    """Layer *n* with one block, one transaction and one reward."""
    timestamp = GENESIS_TIME + n * 300
    return LayerBundle(
        layer=Layer(
            number=n,
            timestamp=timestamp,
            hash=f"{n:064x}",
            status="applied",
            blocks=(Block(id=block_id(n), layer=n, tx_ids=(tx_id(n),)),),
        ),
        transactions=(
            Transaction(
                id=tx_id(n),
                layer=n,
                sender=address(n % 3),
                recipient=address(n % 3 + 1),
                amount=100 + n,
                fee=1,
                counter=n,
                status="applied",
                block_id=block_id(n),
                timestamp=timestamp,
            ),
        ),
        rewards=(
            Reward(
                layer=n,
                smesher_id=smesher_id(n % 2),
                coinbase=address(10 + n % 2),
                total=1000,
                layer_reward=900,
                timestamp=timestamp,
            ),
        ),
    )


def make_activation(n: int) -> Activation:
    return Activation(
        id=atx_id(n),
        smesher_id=smesher_id(n % 2),
        layer=n,
        coinbase=address(10 + n % 2),
        publish_epoch=n // LAYERS_PER_EPOCH,
        num_units=4,
        commitment_size=256,
        received=GENESIS_TIME + n,
    )


class FakeNode:
    """In-memory stand-in for :class:`NodeClient` serving :func:`make_bundle` layers."""

    def __init__(self, top_layer: int = 0, *, layers_per_epoch: int = LAYERS_PER_EPOCH) -> None:
        self.top_layer = top_layer
        self.layers_per_epoch = layers_per_epoch
        self.fail_layers: set[int] = set()
        self.fail_status = False
        self.fail_network = False
        self.requested: list[int] = []
        self.is_connected = False

    async def connect(self) -> None:
        self.is_connected = True

    async def close(self) -> None:
        self.is_connected = False

    async def get_status(self) -> NodeStatus:
        if self.fail_status:
            raise NodeError("node unreachable")
        return NodeStatus(top_layer=self.top_layer, current_layer=self.top_layer + 1, is_synced=True)

    async def get_network_info(self) -> NetworkInfo:
        if self.fail_network:
            raise NodeError("node unreachable")
        return NetworkInfo(layers_per_epoch=self.layers_per_epoch, hrp="sm", layer_duration=300)

    async def get_layer(self, number: int) -> LayerBundle:
        self.requested.append(number)
        if number in self.fail_layers:
            raise NodeError(f"layer {number} unavailable")
        return make_bundle(number)

    async def get_activations(self, layer: int) -> list[Activation]:
        return [make_activation(layer)]

    async def get_accounts(self, addresses: list[str], *, layer: int) -> list[AccountState]:
        return [AccountState(address=a, balance=1000 + layer, nonce=layer, layer=layer) for a in addresses]


async def store_snapshot(store: EntityStore, layers: range) -> dict[str, Any]:
    """Everything observable about the store, for idempotence checks."""
    return {
        "counts": {c.value: await store.count(c) for c in Collection},
        "watermark": await store.get_watermark(),
        "layers": [await store.get_layer(n) for n in layers],
        "rewards": [await store.list_rewards(n) for n in layers],
        "smeshers": await store.list_smeshers(),
        "coinbases": await store.coinbase_index(),
        "accounts": [await store.get_account(address(i)) for i in range(12)],
    }


def with_sync(config: AppConfig, **overrides: Any) -> AppConfig:
    """Copy of *config* with some sync settings replaced."""
    return config.model_copy(update={"sync": config.sync.model_copy(update=overrides)})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Provide a test AppConfig backed by a temp-file SQLite database."""
    return AppConfig(
        debug=True,
        pid_file=str(tmp_path / "explorer-collector.pid"),
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn=f"sqlite+aiosqlite:///{tmp_path / 'explorer.db'}",
        ),
        network=NetworkConfig(layers_per_epoch=LAYERS_PER_EPOCH),
        sync=SyncConfig(
            max_layers_per_advance=50,
            poll_interval=0.01,
            backfill_chunk_size=5,
            backfill_workers=2,
            gap_retry_base=5.0,
            gap_retry_max=60.0,
            gap_scan_period=3600.0,
        ),
        metrics=MetricsConfig(enabled=False),
    )


@pytest.fixture
async def datastore(app_config) -> AsyncIterator[Datastore]:
    """An open datastore with the schema created."""
    from explorer_collector.datastore.client import Datastore
    from explorer_collector.datastore.migrations import run_auto_migrate

    ds = Datastore(app_config.db)
    await ds.open()
    await run_auto_migrate(ds.engine)
    yield ds
    await ds.close()


@pytest.fixture
def store(datastore) -> EntityStore:
    from explorer_collector.storage.store import EntityStore

    return EntityStore(datastore, timeout=5.0)


@pytest.fixture
def fake_node() -> FakeNode:
    return FakeNode(top_layer=25)


@pytest.fixture
def ingestor(fake_node, store):
    from explorer_collector.sync.ingest import LayerIngestor

    return LayerIngestor(fake_node, store, layers_per_epoch=LAYERS_PER_EPOCH)
