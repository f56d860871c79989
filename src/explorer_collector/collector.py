"""Collector — owns the store, node client, sync components and background tasks."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from explorer_collector.datastore.client import Datastore
from explorer_collector.datastore.migrations import run_auto_migrate
from explorer_collector.errors.collector_errors import CollectorError, FatalStartupError
from explorer_collector.metrics.collector import CollectorMetrics
from explorer_collector.node.client import NodeClient
from explorer_collector.search.resolver import IdentifierResolver
from explorer_collector.stats.epochs import StatsRecalculator
from explorer_collector.storage.store import EntityStore
from explorer_collector.sync.engine import SyncEngine
from explorer_collector.sync.gaps import GapScanner
from explorer_collector.sync.ingest import LayerIngestor
from explorer_collector.taskmanager.manager import CronJob, TaskManager
from explorer_collector.taskmanager.supervisor import BackoffPolicy, Supervisor
from explorer_collector.taskmanager.tasks import (
    CALCULATE_METRICS_PERIOD,
    task_calculate_metrics,
    task_scan_gaps,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from explorer_collector.config.settings import AppConfig

logger = logging.getLogger(__name__)

_ERR_NOT_OPEN = "Collector not open. Call open() first."
_ERR_NOT_STARTED = "Collector not started. Call start() first."


class Collector:
    """Wires the collector's components together and manages their lifecycle.

    ``open()`` brings up the store (enough to serve searches); ``start()``
    connects to the node and starts live sync and the cron jobs.

    Usage::

        collector = Collector(config)
        await collector.open()
        await collector.start()
        ...
        await collector.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        node: NodeClient | None = None,
        metrics: CollectorMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the collector with configuration.

        Args:
            config: Application configuration.
            node: Node client; built from ``config.node`` when omitted.
            metrics: Metrics sink; a fresh registry when omitted.
            sleep: Sleep function shared by the background loops.
        """
        self._config = config
        self._node = node or NodeClient(config.node)
        self._metrics = metrics or CollectorMetrics()
        self._sleep = sleep

        self._datastore: Datastore | None = None
        self._store: EntityStore | None = None
        self._resolver: IdentifierResolver | None = None

        self._ingestor: LayerIngestor | None = None
        self._stats: StatsRecalculator | None = None
        self._engine: SyncEngine | None = None
        self._gaps: GapScanner | None = None
        self._task_manager: TaskManager | None = None
        self._supervisor: Supervisor | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the datastore and create the schema.

        Raises:
            FatalStartupError: The store cannot be opened.
        """
        if self._datastore is not None:
            return
        datastore: Datastore | None = None
        try:
            datastore = Datastore(self._config.db)
            await datastore.open()
            await run_auto_migrate(datastore.engine)
        except (SQLAlchemyError, OSError, ValueError) as exc:
            if datastore is not None:
                await datastore.close()
            msg = f"cannot open store {self._config.db.name}: {exc}"
            raise FatalStartupError(msg) from exc

        self._datastore = datastore
        self._store = EntityStore(datastore, timeout=self._config.db.operation_timeout)
        self._resolver = IdentifierResolver(self._store, self._config.network)
        logger.info("Store %s opened (%s)", datastore.name, datastore.dialect)

    async def start(self) -> None:
        """Connect to the node, prepare live sync and start background work.

        Raises:
            FatalStartupError: The node cannot be reached.
        """
        store = self.store
        sync = self._config.sync
        await self._node.connect()

        self._ingestor = LayerIngestor(
            self._node,
            store,
            layers_per_epoch=self._config.network.layers_per_epoch,
            atx_sync=sync.atx_sync,
            metrics=self._metrics,
        )
        self._stats = StatsRecalculator(
            store,
            layers_per_epoch=self._config.network.layers_per_epoch,
            metrics=self._metrics,
        )
        self._engine = SyncEngine(
            self._config,
            self._node,
            store,
            self._ingestor,
            self._stats,
            metrics=self._metrics,
            sleep=self._sleep,
        )
        try:
            await self._engine.prepare()
        except CollectorError as exc:
            msg = f"cannot prepare live sync: {exc.message}"
            raise FatalStartupError(msg) from exc

        self._task_manager = TaskManager(metrics=self._metrics, sleep=self._sleep)
        if sync.sync_missing_layers:
            self._gaps = GapScanner(
                sync, store, self._ingestor, stats=self._stats, metrics=self._metrics
            )
            self._task_manager.register(
                "scan_gaps",
                CronJob(
                    handler=partial(task_scan_gaps, self._gaps),
                    period=sync.gap_scan_period,
                    run_on_start=True,
                ),
            )
        self._task_manager.register(
            "calculate_metrics",
            CronJob(
                handler=partial(task_calculate_metrics, store, self._metrics),
                period=CALCULATE_METRICS_PERIOD,
            ),
        )
        await self._task_manager.start()

        self._supervisor = Supervisor(
            "live_sync",
            self._engine.run,
            policy=BackoffPolicy.fixed(sync.restart_backoff),
            sleep=self._sleep,
            metrics=self._metrics,
        )
        self._supervisor.start()
        logger.info("Collector started (gap backfill %s)", "on" if sync.sync_missing_layers else "off")

    async def close(self) -> None:
        """Stop background work and release connections.

        Can be called multiple times (idempotent).
        """
        if self._supervisor is not None:
            await self._supervisor.stop()
            self._supervisor = None
        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None
        if self._node.is_connected:
            await self._node.close()
        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None
            self._store = None
            self._resolver = None
            logger.info("Collector closed")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def metrics(self) -> CollectorMetrics:
        return self._metrics

    @property
    def is_open(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> EntityStore:
        if self._store is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._store

    @property
    def resolver(self) -> IdentifierResolver:
        if self._resolver is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._resolver

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_STARTED)
        return self._engine

    @property
    def gaps(self) -> GapScanner | None:
        """Gap scanner, ``None`` when backfill is disabled or not started."""
        return self._gaps

    @property
    def supervisor(self) -> Supervisor | None:
        return self._supervisor

    @property
    def task_manager(self) -> TaskManager | None:
        return self._task_manager
