"""Shrink data models."""

from shrink.models.candidate import (
    CandidateFile,
    CandidateState,
    Category,
    SkipReason,
    StateKind,
    candidate_id,
)
from shrink.models.compression_result import CompressionResult, ProgressEvent
from shrink.models.scan_entry import ScanEntry

__all__ = [
    "CandidateFile",
    "CandidateState",
    "Category",
    "CompressionResult",
    "ProgressEvent",
    "ScanEntry",
    "SkipReason",
    "StateKind",
    "candidate_id",
]
