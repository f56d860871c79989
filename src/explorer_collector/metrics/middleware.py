"""Request metrics for the search API.

Every request is reported to :meth:`CollectorMetrics.observe_request` under
its route template (``/search/{identifier}``), so identifiers never become
label values. Requests that match no route share the ``unmatched`` label.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Callable

    from starlette.requests import Request
    from starlette.responses import Response

    from explorer_collector.metrics.collector import CollectorMetrics

UNMATCHED_PATH = "unmatched"


def route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_PATH)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Records request count and duration into the collector's registry."""

    def __init__(self, app: object, *, metrics: CollectorMetrics) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:  # type: ignore[type-arg]
        start = time.monotonic()
        response: Response = await call_next(request)
        self._metrics.observe_request(
            request.method,
            route_path(request),
            response.status_code,
            time.monotonic() - start,
        )
        return response
