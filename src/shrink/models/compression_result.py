"""Compression result and progress event dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from shrink.models.candidate import CandidateState


@dataclass(frozen=True, slots=True)
class CompressionResult:
    """Outcome of one compression job.

    For skipped and failed jobs ``compressed_size`` equals
    ``original_size`` because nothing changed on disk.
    """

    candidate_id: str
    original_size: int
    compressed_size: int
    elapsed_seconds: float
    state: CandidateState
    output_path: Path | None = None

    @property
    def saved_bytes(self) -> int:
        return self.original_size - self.compressed_size

    @property
    def ratio(self) -> float:
        if self.compressed_size <= 0:
            return 1.0
        return self.original_size / self.compressed_size


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One entry of the event stream emitted while a run is in progress."""

    candidate_id: str
    state: CandidateState
    original_size: int
    bytes_processed: int = 0
    compressed_size: int | None = None
    error: str | None = None
