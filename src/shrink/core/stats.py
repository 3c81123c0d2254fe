"""Running totals and the efficiency score."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field

from shrink.models.candidate import StateKind
from shrink.models.compression_result import CompressionResult

log = logging.getLogger(__name__)

# Score constants. The score is cosmetic; these only need to stay fixed.
REFERENCE_RATIO = 2.6
REFERENCE_SECONDS_PER_GIB = 10.0
ALPHA = 0.8

_GIB = 1 << 30
_MIN_ELAPSED = 0.001


def efficiency_score(original_bytes: int, compressed_bytes: int, elapsed_seconds: float) -> float:
    """Combine compression ratio and throughput into a single number.

    ``(ratio / REFERENCE_RATIO) ** ALPHA * (REFERENCE_SECONDS_PER_GIB / seconds_per_gib) ** (1 - ALPHA)``

    Elapsed time is normalized per GiB of input so runs of different sizes
    compare. Returns 0.0 when nothing was processed.
    """
    if original_bytes <= 0 or compressed_bytes <= 0:
        return 0.0
    ratio = original_bytes / compressed_bytes
    seconds_per_gib = max(elapsed_seconds, _MIN_ELAPSED) / (original_bytes / _GIB)
    return (ratio / REFERENCE_RATIO) ** ALPHA * (REFERENCE_SECONDS_PER_GIB / seconds_per_gib) ** (1 - ALPHA)


@dataclass(frozen=True, slots=True)
class AggregateStats:
    """Point-in-time snapshot of the aggregator."""

    original_bytes: int = 0
    compressed_bytes: int = 0
    removed_bytes: int = 0
    elapsed_seconds: float = 0.0
    counts: dict[StateKind, int] = field(default_factory=dict)
    failure_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def saved_bytes(self) -> int:
        return self.original_bytes - self.compressed_bytes

    @property
    def ratio(self) -> float:
        if self.compressed_bytes <= 0:
            return 1.0
        return self.original_bytes / self.compressed_bytes

    @property
    def score(self) -> float:
        return efficiency_score(self.original_bytes, self.compressed_bytes, self.elapsed_seconds)

    def count(self, kind: StateKind) -> int:
        return self.counts.get(kind, 0)


class StatsAggregator:
    """Thread-safe accumulator fed by the worker pool and by deletes.

    Results are keyed by candidate id. Recording a new result for an id
    first retracts the previous one, so a candidate that was reset and
    processed again is never counted twice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, CompressionResult] = {}
        self._removed: dict[str, int] = {}
        self._original = 0
        self._compressed = 0
        self._elapsed = 0.0
        self._counts: Counter[StateKind] = Counter()
        self._reasons: Counter[str] = Counter()

    def record(self, result: CompressionResult) -> None:
        """Add one terminal compression result."""
        with self._lock:
            previous = self._results.pop(result.candidate_id, None)
            if previous is not None:
                log.debug("Replacing earlier result for candidate %s", result.candidate_id)
                self._apply(previous, -1)
            self._results[result.candidate_id] = result
            self._apply(result, 1)

    def record_removal(self, candidate_id: str, freed_bytes: int) -> None:
        """Count a manual delete. Repeated calls for one id count once."""
        with self._lock:
            if candidate_id in self._removed:
                return
            self._removed[candidate_id] = freed_bytes
            self._counts[StateKind.REMOVED] += 1

    def snapshot(self) -> AggregateStats:
        with self._lock:
            return AggregateStats(
                original_bytes=self._original,
                compressed_bytes=self._compressed,
                removed_bytes=sum(self._removed.values()),
                elapsed_seconds=self._elapsed,
                counts={k: v for k, v in self._counts.items() if v},
                failure_reasons={k: v for k, v in self._reasons.items() if v},
            )

    def _apply(self, result: CompressionResult, sign: int) -> None:
        kind = result.state.kind
        self._counts[kind] += sign
        self._elapsed += sign * result.elapsed_seconds
        match kind:
            case StateKind.COMPRESSED | StateKind.SKIPPED:
                self._original += sign * result.original_size
                self._compressed += sign * result.compressed_size
            case StateKind.FAILED:
                self._reasons[result.state.reason] += sign
            case _:
                log.warning("Unexpected result state %s for %s", result.state, result.candidate_id)
