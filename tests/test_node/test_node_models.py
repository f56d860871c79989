"""Tests for node data models — from_dict decoding and derived properties."""

from __future__ import annotations

from explorer_collector.node.models import (
    AccountState,
    Activation,
    LayerBundle,
    NetworkInfo,
    NodeStatus,
    Reward,
    Transaction,
)


class TestNodeStatus:
    def test_camel_case(self) -> None:
        status = NodeStatus.from_dict(
            {"topLayer": 120, "currentLayer": 121, "connectedPeers": 8, "isSynced": True}
        )
        assert status == NodeStatus(top_layer=120, current_layer=121, connected_peers=8, is_synced=True)

    def test_snake_case_and_defaults(self) -> None:
        status = NodeStatus.from_dict({"top_layer": 3})
        assert status.top_layer == 3
        assert status.current_layer == 0
        assert status.is_synced is False


class TestNetworkInfo:
    def test_from_dict(self) -> None:
        info = NetworkInfo.from_dict(
            {"layersPerEpoch": 4032, "hrp": "stest", "genesisTime": 1690000000, "layerDuration": 300}
        )
        assert info.layers_per_epoch == 4032
        assert info.hrp == "stest"
        assert info.genesis_time == 1690000000
        assert info.layer_duration == 300

    def test_null_fields_use_defaults(self) -> None:
        info = NetworkInfo.from_dict({"layersPerEpoch": 10, "hrp": None})
        assert info.hrp == "sm"


class TestEntities:
    def test_transaction_principal(self) -> None:
        tx = Transaction.from_dict(
            {"id": "0xab", "layer": 5, "principal": "sm1a", "recipient": "sm1b", "amount": 7}
        )
        assert tx.sender == "sm1a"
        assert tx.addresses == {"sm1a", "sm1b"}

    def test_transaction_without_recipient(self) -> None:
        tx = Transaction.from_dict({"id": "0xab", "layer": 5, "principal": "sm1a"})
        assert tx.addresses == {"sm1a"}

    def test_reward(self) -> None:
        reward = Reward.from_dict(
            {"layer": 9, "smesher": "0xs", "coinbase": "sm1c", "total": 10, "layerReward": 8}
        )
        assert reward.smesher_id == "0xs"
        assert reward.layer_reward == 8
        assert reward.id == ""

    def test_activation(self) -> None:
        atx = Activation.from_dict(
            {"id": "0xa", "smesherId": "0xs", "layer": 4, "numUnits": 4, "commitmentSize": 256}
        )
        assert atx.smesher_id == "0xs"
        assert atx.num_units == 4
        assert atx.commitment_size == 256

    def test_account_layer_fallback(self) -> None:
        state = AccountState.from_dict({"address": "sm1a", "balance": 5}, layer=12)
        assert state == AccountState(address="sm1a", balance=5, nonce=0, layer=12)


class TestLayerBundle:
    def test_from_dict(self) -> None:
        bundle = LayerBundle.from_dict(
            {
                "layer": {
                    "number": 7,
                    "hash": "ff",
                    "blocks": [{"id": "0xb1", "txIds": ["0xt1"]}, {"id": "0xb2"}],
                },
                "transactions": [
                    {"id": "0xt1", "layer": 7, "principal": "sm1a", "recipient": "sm1b"},
                ],
                "rewards": [{"layer": 7, "smesher": "0xs", "coinbase": "sm1c"}],
            }
        )
        assert bundle.layer.number == 7
        assert bundle.layer.block_ids == ["0xb1", "0xb2"]
        assert bundle.layer.blocks[0].tx_ids == ("0xt1",)
        assert bundle.layer.blocks[1].layer == 7
        assert bundle.activations == ()
        assert bundle.touched_addresses == ["sm1a", "sm1b", "sm1c"]

    def test_empty_layer(self) -> None:
        bundle = LayerBundle.from_dict({"layer": {"number": 1}})
        assert bundle.transactions == ()
        assert bundle.touched_addresses == []
