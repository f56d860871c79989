"""Supervisor — crash-only restart loop for long-running coroutines.

The supervised target is restarted after *any* exception, after sleeping
the delay its :class:`BackoffPolicy` prescribes. The sleep function is
injectable so the schedule can be driven by a fake clock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from explorer_collector.errors.collector_errors import CollectorError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from explorer_collector.metrics.collector import CollectorMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before restart number ``attempt`` (0-based).

    ``base * factor ** attempt``, capped at ``maximum`` when given.
    """

    base: float
    factor: float = 1.0
    maximum: float | None = None

    def __post_init__(self) -> None:
        if self.base < 0 or self.factor < 1:
            msg = f"invalid backoff policy: base={self.base}, factor={self.factor}"
            raise ValueError(msg)

    @classmethod
    def fixed(cls, delay: float) -> BackoffPolicy:
        return cls(base=delay)

    @classmethod
    def exponential(cls, base: float, maximum: float, *, factor: float = 2.0) -> BackoffPolicy:
        return cls(base=base, factor=factor, maximum=maximum)

    def delay(self, attempt: int) -> float:
        value = self.base * self.factor**attempt
        if self.maximum is not None:
            value = min(value, self.maximum)
        return value


class Supervisor:
    """Runs *target* and restarts it whenever it raises.

    The loop ends when the target returns normally, when the task is
    cancelled, or after ``max_restarts`` restarts (the last error is then
    re-raised).

    Usage::

        supervisor = Supervisor("live_sync", engine.run, policy=BackoffPolicy.fixed(5))
        supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        name: str,
        target: Callable[[], Awaitable[None]],
        *,
        policy: BackoffPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: CollectorMetrics | None = None,
        max_restarts: int | None = None,
    ) -> None:
        self._name = name
        self._target = target
        self._policy = policy
        self._sleep = sleep
        self._metrics = metrics
        self._max_restarts = max_restarts
        self._restarts = 0
        self._last_error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def restarts(self) -> int:
        """Number of restarts so far."""
        return self._restarts

    @property
    def last_error(self) -> BaseException | None:
        """The most recent failure of the target."""
        return self._last_error

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        """Run the target under supervision in the current task."""
        while True:
            try:
                await self._target()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._last_error = exc
                if self._max_restarts is not None and self._restarts >= self._max_restarts:
                    logger.error("%s failed %d times, giving up", self._name, self._restarts + 1)
                    raise
                delay = self._policy.delay(self._restarts)
                self._restarts += 1
                if self._metrics:
                    self._metrics.inc_restarts(self._name)
                if isinstance(exc, CollectorError) and exc.transient:
                    logger.warning("%s failed: %s; restarting in %.1fs", self._name, exc.message, delay)
                else:
                    logger.exception("%s crashed; restarting in %.1fs", self._name, delay)
                await self._sleep(delay)
            else:
                logger.info("%s finished", self._name)
                return

    def start(self) -> asyncio.Task[None]:
        """Run the supervised loop on a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=self._name)
        return self._task

    async def stop(self) -> None:
        """Cancel the background task and wait for it to unwind."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        (result,) = await asyncio.gather(task, return_exceptions=True)
        if isinstance(result, Exception):
            logger.error("%s ended with error: %s", self._name, result)
