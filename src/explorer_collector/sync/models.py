"""Sync records — layer ranges, watermark state, pending gaps, outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from explorer_collector.errors.collector_errors import CollectorError


def epoch_of(layer: int, layers_per_epoch: int) -> int:
    """Epoch a layer belongs to."""
    return layer // layers_per_epoch


@dataclass(frozen=True, order=True)
class LayerRange:
    """Inclusive range of layer numbers ``[start, end]``."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            msg = f"invalid layer range [{self.start}, {self.end}]"
            raise ValueError(msg)

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __contains__(self, layer: object) -> bool:
        return isinstance(layer, int) and self.start <= layer <= self.end

    def __str__(self) -> str:
        return f"[{self.start}, {self.end}]"

    @classmethod
    def for_epoch(cls, epoch: int, layers_per_epoch: int) -> LayerRange:
        """The layers making up *epoch*."""
        start = epoch * layers_per_epoch
        return cls(start, start + layers_per_epoch - 1)

    def overlaps(self, other: LayerRange) -> bool:
        """Whether the two ranges share at least one layer."""
        return self.start <= other.end and other.start <= self.end

    def subtract(self, others: Iterable[LayerRange]) -> list[LayerRange]:
        """The parts of this range not covered by any of *others*."""
        pieces = [self]
        for other in others:
            remaining: list[LayerRange] = []
            for piece in pieces:
                if not piece.overlaps(other):
                    remaining.append(piece)
                    continue
                if piece.start < other.start:
                    remaining.append(LayerRange(piece.start, other.start - 1))
                if piece.end > other.end:
                    remaining.append(LayerRange(other.end + 1, piece.end))
            pieces = remaining
        return pieces

    def chunks(self, size: int) -> list[LayerRange]:
        """Split into consecutive ranges of at most *size* layers."""
        return [
            LayerRange(start, min(start + size - 1, self.end))
            for start in range(self.start, self.end + 1, size)
        ]


def merge_ranges(ranges: Iterable[LayerRange]) -> list[LayerRange]:
    """Union overlapping or adjacent ranges, ordered by start."""
    merged: list[LayerRange] = []
    for current in sorted(ranges):
        if merged and current.start <= merged[-1].end + 1:
            last = merged[-1]
            merged[-1] = LayerRange(last.start, max(last.end, current.end))
        else:
            merged.append(current)
    return merged


@dataclass(frozen=True)
class Gap:
    """A layer range pending backfill and its retry bookkeeping."""

    id: int
    range: LayerRange
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: str = ""

    def is_due(self, now: float) -> bool:
        """Whether the retry backoff has elapsed."""
        return self.next_attempt_at <= now


@dataclass(frozen=True)
class SyncState:
    """Durable resumption point: watermark plus the pending gap list.

    ``last_layer`` is ``-1`` until the first layer has been applied.
    """

    last_layer: int = -1
    gaps: tuple[Gap, ...] = ()

    @property
    def has_synced(self) -> bool:
        return self.last_layer >= 0


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one :meth:`SyncEngine.advance` call.

    Attributes:
        layers_applied: Layers fully applied (and covered by the watermark).
        watermark: Watermark after the call.
        error: Transient error that stopped the call early, if any.
    """

    layers_applied: int = 0
    watermark: int = -1
    error: CollectorError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BackfillResult:
    """Result of backfilling one gap."""

    range: LayerRange
    applied: list[int] = field(default_factory=list)
    failed_layer: int | None = None
    error: CollectorError | None = None

    @property
    def completed(self) -> bool:
        return self.failed_layer is None
