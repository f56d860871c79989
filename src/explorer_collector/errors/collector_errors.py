"""CollectorError — base exception class and the node/store error family."""

from __future__ import annotations


class CollectorError(Exception):
    """Base error for all collector operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
        transient: Whether the owning loop should retry after a backoff.
    """

    transient: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "collector-error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class NodeError(CollectorError):
    """Node unreachable, timed out, or answered with a non-2xx status."""

    transient = True

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="node-error")


class StoreError(CollectorError):
    """Persistent store failure.

    Lost connections and lock contention are *transient*; constraint or
    schema errors are not.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "store-error",
        transient: bool = False,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code)
        if transient:
            self.transient = True


class StoreTimeoutError(StoreError):
    """A store operation exceeded its per-call timeout."""

    transient = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=503, code="store-timeout")


class FatalStartupError(CollectorError):
    """The store cannot be opened or the node cannot be reached at startup."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500, code="fatal-startup")
