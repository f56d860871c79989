"""Pre-defined error instances surfaced to API clients."""

from __future__ import annotations

from explorer_collector.errors.collector_errors import CollectorError

# -- Search ----------------------------------------------------------------

ErrNotFound = CollectorError("Not found", status_code=404, code="not-found")

# -- Availability ----------------------------------------------------------

ErrServiceUnavailable = CollectorError(
    "service temporarily unavailable", status_code=503, code="service-unavailable"
)
ErrNotInitialized = CollectorError(
    "collector not initialized", status_code=503, code="not-initialized"
)
