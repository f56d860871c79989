"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from explorer_collector import __version__
from explorer_collector.api.search import router as search_router
from explorer_collector.collector import Collector
from explorer_collector.config.settings import AppConfig
from explorer_collector.errors.collector_errors import CollectorError
from explorer_collector.metrics.collector import CollectorMetrics
from explorer_collector.metrics.middleware import PrometheusMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle hooks.

    A collector handed to :func:`create_app` is owned by the caller and
    left alone. Otherwise the app opens its own (store only, no sync) and
    closes it on exit.
    """
    if app.state.collector is not None:
        yield
        return

    collector = Collector(app.state.config, metrics=app.state.metrics)
    try:
        await collector.open()
        app.state.collector = collector
        logger.info("Search store opened")
        yield
    finally:
        app.state.collector = None
        await collector.close()
        logger.info("Search store closed")


def create_app(*, config: AppConfig | None = None, collector: Collector | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        config: Optional AppConfig. If *None*, the collector's config or a
            default config from environment variables is used.
        collector: A collector whose store the API should share.
    """
    if config is None:
        config = collector.config if collector is not None else AppConfig()

    app = FastAPI(
        title="explorer-collector",
        version=__version__,
        description="Layer explorer collector and search API",
        lifespan=_lifespan,
    )

    app.state.config = config
    app.state.collector = collector
    app.state.metrics = collector.metrics if collector is not None else CollectorMetrics()

    # -- Error handler --
    @app.exception_handler(CollectorError)
    async def _collector_error_handler(request: Request, exc: CollectorError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.code, "message": exc.message},
        )

    # -- Base routes --
    @app.get("/health", tags=["base"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # -- Prometheus request metrics middleware --
    app.add_middleware(PrometheusMiddleware, metrics=app.state.metrics)

    app.include_router(search_router)

    return app
