"""Candidate file dataclass and its lifecycle states."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from shrink.errors import InvalidTransition


class Category(str, Enum):
    """What kind of artifact a candidate is. Assigned once by the classifier."""

    DEPENDENCY = "dependency"
    BUILD_ARTIFACT = "build_artifact"
    LOG_FILE = "log_file"
    GENERIC = "generic"


class StateKind(str, Enum):
    PENDING = "pending"
    COMPRESSING = "compressing"
    COMPRESSED = "compressed"
    SKIPPED = "skipped"
    FAILED = "failed"
    REMOVED = "removed"


class SkipReason(str, Enum):
    NOT_ELIGIBLE = "not_eligible"
    NO_GAIN = "no_gain"
    ALREADY_COMPRESSED = "already_compressed"


_TERMINAL = frozenset({
    StateKind.COMPRESSED,
    StateKind.SKIPPED,
    StateKind.FAILED,
    StateKind.REMOVED,
})

_ALLOWED: dict[StateKind, frozenset[StateKind]] = {
    StateKind.PENDING: frozenset({StateKind.COMPRESSING, StateKind.SKIPPED, StateKind.REMOVED}),
    StateKind.COMPRESSING: frozenset({StateKind.COMPRESSED, StateKind.SKIPPED, StateKind.FAILED}),
    StateKind.COMPRESSED: frozenset({StateKind.REMOVED}),
    StateKind.SKIPPED: frozenset({StateKind.REMOVED}),
    StateKind.FAILED: frozenset({StateKind.REMOVED}),
    StateKind.REMOVED: frozenset(),
}

# States an explicit reset may return to Pending from.
_RESETTABLE = frozenset({StateKind.SKIPPED, StateKind.FAILED})


@dataclass(frozen=True, slots=True)
class CandidateState:
    """Tagged lifecycle state. ``reason`` is the payload of Skipped and Failed."""

    kind: StateKind
    reason: str = ""

    @classmethod
    def pending(cls) -> CandidateState:
        return cls(StateKind.PENDING)

    @classmethod
    def compressing(cls) -> CandidateState:
        return cls(StateKind.COMPRESSING)

    @classmethod
    def compressed(cls) -> CandidateState:
        return cls(StateKind.COMPRESSED)

    @classmethod
    def skipped(cls, reason: SkipReason) -> CandidateState:
        return cls(StateKind.SKIPPED, SkipReason(reason).value)

    @classmethod
    def failed(cls, reason: str) -> CandidateState:
        return cls(StateKind.FAILED, reason or "unknown error")

    @classmethod
    def removed(cls) -> CandidateState:
        return cls(StateKind.REMOVED)

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value}({self.reason})"
        return self.kind.value


def candidate_id(path: Path | str) -> str:
    """Return a stable identifier for a filesystem path."""
    raw = os.path.abspath(os.fspath(path)).encode("utf-8", "surrogateescape")
    return hashlib.blake2b(raw, digest_size=8).hexdigest()


@dataclass(slots=True)
class CandidateFile:
    """A scanned and classified filesystem entry.

    ``category`` can be set exactly once. ``state`` only moves forward
    through :meth:`transition`; :meth:`reset` is the single way back to
    Pending. Callers sharing a candidate between threads must hold the
    owning collection's lock around both.
    """

    id: str
    path: Path
    size_bytes: int
    modified_time: float
    category: Category
    eligible: bool = True
    state: CandidateState = field(default_factory=CandidateState.pending)
    is_dir: bool = False
    file_count: int = 1
    output_path: Path | None = None

    def __setattr__(self, name: str, value: object) -> None:
        if name == "category" and hasattr(self, "category"):
            raise AttributeError("category is assigned once and cannot change")
        object.__setattr__(self, name, value)

    @property
    def on_disk_path(self) -> Path:
        """Where the candidate's data currently lives."""
        if self.state.kind is StateKind.COMPRESSED and self.output_path is not None:
            return self.output_path
        return self.path

    def transition(self, new_state: CandidateState) -> None:
        """Move to ``new_state`` or raise :class:`InvalidTransition`."""
        if new_state.kind not in _ALLOWED[self.state.kind]:
            raise InvalidTransition(f"{self.path}: cannot go from {self.state} to {new_state}")
        self.state = new_state

    def reset(self) -> None:
        """Return a skipped or failed candidate to Pending."""
        if self.state.kind not in _RESETTABLE:
            raise InvalidTransition(f"{self.path}: cannot reset from {self.state}")
        self.state = CandidateState.pending()
