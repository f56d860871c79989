"""Application entry point for the explorer collector.

Runs live sync, the cron jobs, the metrics exporter and the search API in
one event loop. uvicorn handles SIGINT/SIGTERM; on shutdown the collector
is stopped and the process marker file removed.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import uvicorn
from prometheus_client import start_http_server

from explorer_collector import __version__
from explorer_collector.api.app import create_app
from explorer_collector.collector import Collector
from explorer_collector.config.settings import AppConfig
from explorer_collector.errors.collector_errors import FatalStartupError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="explorer-collector",
        description="Index a layer-based ledger and serve identifier search.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("EXPLORER_CONFIG_PATH", ""),
        help="YAML config file (env: EXPLORER_CONFIG_PATH)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def load_config(path: str) -> AppConfig:
    """Build the one immutable configuration for the process."""
    return AppConfig.from_yaml(path) if path else AppConfig()


def configure_logging(*, debug: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=_LOG_FORMAT)


def write_pid_file(path: str) -> bool:
    """Write the process marker; failure is logged, not fatal."""
    try:
        Path(path).write_text(f"{os.getpid()}\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot write pid file %s: %s", path, exc)
        return False
    return True


def remove_pid_file(path: str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Cannot remove pid file %s: %s", path, exc)


async def serve(config: AppConfig) -> None:
    """Run the collector and the API server until shutdown.

    Raises:
        FatalStartupError: The store or the node is unavailable at startup.
    """
    collector = Collector(config)
    metrics_server = None
    pid_written = False
    try:
        await collector.open()
        await collector.start()

        if config.metrics.enabled:
            metrics_server, _ = start_http_server(
                config.metrics.port,
                addr=config.metrics.host,
                registry=collector.metrics.registry,
            )
            logger.info("Metrics on %s:%d", config.metrics.host, config.metrics.port)

        pid_written = write_pid_file(config.pid_file)

        app = create_app(config=config, collector=collector)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=config.server.host,
                port=config.server.port,
                log_level="debug" if config.debug else "info",
            )
        )
        await server.serve()
    finally:
        await collector.close()
        if metrics_server is not None:
            metrics_server.shutdown()
        if pid_written:
            remove_pid_file(config.pid_file)


def main(argv: Sequence[str] | None = None) -> int:
    """Start the explorer collector."""
    args = parse_args(argv)
    config = load_config(args.config)
    configure_logging(debug=config.debug)
    logger.info("explorer-collector %s starting", __version__)
    try:
        asyncio.run(serve(config))
    except FatalStartupError as exc:
        logger.error("Fatal: %s", exc.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
