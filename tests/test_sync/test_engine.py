"""Tests for SyncEngine — ordered live sync and the monotonic watermark."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import FakeNode, store_snapshot, with_sync

from explorer_collector.errors.collector_errors import NodeError, StoreError, StoreTimeoutError
from explorer_collector.metrics.collector import CollectorMetrics
from explorer_collector.stats.epochs import StatsRecalculator
from explorer_collector.sync.engine import SyncEngine
from explorer_collector.sync.ingest import LayerIngestor
from explorer_collector.sync.models import LayerRange


class _Stop(Exception):
    """Breaks out of the engine's run loop."""


def _engine(config, node, store, **kwargs) -> SyncEngine:
    # Constants the node has not confirmed yet; prepare() replaces them.
    ingestor = LayerIngestor(node, store, layers_per_epoch=1000)
    stats = StatsRecalculator(store, layers_per_epoch=1000)
    return SyncEngine(config, node, store, ingestor, stats, **kwargs)


# ---------------------------------------------------------------------------
# prepare()
# ---------------------------------------------------------------------------


class TestPrepare:
    async def test_stores_network_info(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, FakeNode(layers_per_epoch=20), store)
        info = await engine.prepare()
        assert info.layers_per_epoch == 20
        assert engine.layers_per_epoch == 20
        assert await store.get_network_info() == info

    async def test_cursor_after_watermark(self, app_config, fake_node, store) -> None:
        await store.advance_watermark(7)
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        assert engine.cursor == 8

    async def test_cursor_starts_at_zero(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        assert engine.cursor == 0

    async def test_reports_genesis_start(self, app_config, fake_node, store, caplog) -> None:
        engine = _engine(app_config, fake_node, store)
        with caplog.at_level("INFO", logger="explorer_collector.sync.engine"):
            await engine.prepare()
        assert "starting from genesis" in caplog.text

    async def test_reports_pending_gaps(self, app_config, fake_node, store, caplog) -> None:
        await store.advance_watermark(12)
        await store.add_gaps([LayerRange(2, 4), LayerRange(8, 9)])
        engine = _engine(app_config, fake_node, store)
        with caplog.at_level("INFO", logger="explorer_collector.sync.engine"):
            await engine.prepare()
        assert "2 gap ranges pending below watermark 12" in caplog.text
        assert engine.cursor == 13

    async def test_from_layer_override(self, app_config, fake_node, store) -> None:
        await store.advance_watermark(20)
        engine = _engine(with_sync(app_config, from_layer=5), fake_node, store)
        await engine.prepare()
        assert engine.cursor == 5
        assert await store.get_watermark() == 20

    async def test_forced_stats_pass(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        await engine.advance()
        assert await store.get_epoch_stats(2) is None

        forced = _engine(with_sync(app_config, recalculate_epoch_stats=True), fake_node, store)
        await forced.prepare()
        epoch2 = await store.get_epoch_stats(2)
        assert epoch2 is not None
        assert epoch2.layers == 6

    async def test_node_unreachable(self, app_config, store) -> None:
        node = FakeNode()
        node.fail_network = True
        with pytest.raises(NodeError):
            await _engine(app_config, node, store).prepare()


# ---------------------------------------------------------------------------
# advance()
# ---------------------------------------------------------------------------


class TestAdvance:
    async def test_applies_up_to_node_top(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        outcome = await engine.advance()
        assert outcome.ok
        assert outcome.layers_applied == 26
        assert outcome.watermark == 25
        assert fake_node.requested == list(range(26))
        assert await store.get_watermark() == 25
        assert await store.find_missing_layers(25) == []

    async def test_batch_limit(self, app_config, fake_node, store) -> None:
        engine = _engine(with_sync(app_config, max_layers_per_advance=10), fake_node, store)
        await engine.prepare()
        first = await engine.advance()
        second = await engine.advance()
        assert (first.layers_applied, first.watermark) == (10, 9)
        assert (second.layers_applied, second.watermark) == (10, 19)
        assert engine.cursor == 20

    async def test_caught_up(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        await engine.advance()
        outcome = await engine.advance()
        assert outcome.layers_applied == 0
        assert outcome.watermark == 25

    async def test_lazy_cursor_without_prepare(self, app_config, fake_node, store) -> None:
        await store.advance_watermark(22)
        engine = _engine(app_config, fake_node, store)
        outcome = await engine.advance()
        assert fake_node.requested == [23, 24, 25]
        assert outcome.watermark == 25

    async def test_epoch_boundary_recalculates(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        await engine.advance()
        epoch0 = await store.get_epoch_stats(0)
        epoch1 = await store.get_epoch_stats(1)
        assert epoch0 is not None
        assert epoch0.layers == 10
        assert epoch1 is not None
        assert epoch1.start_layer == 10
        assert await store.get_epoch_stats(2) is None


class TestFailures:
    async def test_node_error_stops_before_failed_layer(self, app_config, fake_node, store) -> None:
        fake_node.fail_layers.add(5)
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        outcome = await engine.advance()
        assert isinstance(outcome.error, NodeError)
        assert outcome.layers_applied == 5
        assert outcome.watermark == 4
        assert await store.get_layer(5) is None
        assert engine.cursor == 5

        fake_node.fail_layers.clear()
        retry = await engine.advance()
        assert retry.ok
        assert retry.watermark == 25
        assert fake_node.requested.count(5) == 2

    async def test_status_unavailable(self, app_config, fake_node, store) -> None:
        fake_node.fail_status = True
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        outcome = await engine.advance()
        assert isinstance(outcome.error, NodeError)
        assert outcome.layers_applied == 0
        assert outcome.watermark == -1

    async def test_store_timeout_is_not_committed(self, app_config, fake_node, store, monkeypatch) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        real_save_layer = store.save_layer
        calls = {"n": 0}

        async def flaky_save_layer(layer, **kwargs):
            calls["n"] += 1
            if layer.number == 3 and calls["n"] == 4:
                raise StoreTimeoutError("store operation save_layer timed out")
            await real_save_layer(layer, **kwargs)

        monkeypatch.setattr(store, "save_layer", flaky_save_layer)
        outcome = await engine.advance()
        assert isinstance(outcome.error, StoreTimeoutError)
        assert outcome.watermark == 2
        assert await store.get_layer(3) is None

        assert (await engine.advance()).watermark == 25

    async def test_permanent_error_propagates(self, app_config, fake_node, store, monkeypatch) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        monkeypatch.setattr(store, "save_layer", AsyncMock(side_effect=StoreError("disk full")))
        with pytest.raises(StoreError, match="disk full"):
            await engine.advance()


# ---------------------------------------------------------------------------
# Watermark monotonicity & replay
# ---------------------------------------------------------------------------


class TestReplay:
    async def test_replay_never_lowers_watermark(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        await engine.advance()

        observed = []
        replay = _engine(with_sync(app_config, from_layer=3, max_layers_per_advance=5), fake_node, store)
        await replay.prepare()
        for _ in range(5):
            outcome = await replay.advance()
            observed.append(outcome.watermark)
            observed.append(await store.get_watermark())
        assert observed == sorted(observed)
        assert min(observed) == 25
        assert replay.cursor == 26

    async def test_replay_is_idempotent(self, app_config, fake_node, store) -> None:
        engine = _engine(app_config, fake_node, store)
        await engine.prepare()
        await engine.advance()
        first = await store_snapshot(store, range(27))

        replay = _engine(with_sync(app_config, from_layer=0), fake_node, store)
        await replay.prepare()
        await replay.advance()
        assert await store_snapshot(store, range(27)) == first


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    async def test_sleeps_when_caught_up(self, app_config, fake_node, store) -> None:
        sleep = AsyncMock(side_effect=_Stop)
        engine = _engine(app_config, fake_node, store, sleep=sleep)
        await engine.prepare()
        with pytest.raises(_Stop):
            await engine.run()
        sleep.assert_awaited_once_with(app_config.sync.poll_interval)
        assert await store.get_watermark() == 25

    async def test_raises_transient_error(self, app_config, fake_node, store) -> None:
        fake_node.fail_status = True
        engine = _engine(app_config, fake_node, store, sleep=AsyncMock())
        await engine.prepare()
        with pytest.raises(NodeError):
            await engine.run()

    async def test_metrics(self, app_config, fake_node, store) -> None:
        metrics = CollectorMetrics()
        engine = _engine(app_config, fake_node, store, metrics=metrics)
        await engine.prepare()
        await engine.advance()
        assert metrics.registry.get_sample_value("explorer_sync_watermark") == 25.0
        assert metrics.registry.get_sample_value("explorer_node_top_layer") == 25.0
