"""Scan, compression and delete orchestration engine."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, Iterator

from shrink.config import ShrinkConfig
from shrink.core.classifier import Classifier
from shrink.core.compressor import Compressor
from shrink.core.pool import EventCallback, ProgressHandle, WorkerPool
from shrink.core.scanner import Scanner
from shrink.core.stats import AggregateStats, StatsAggregator
from shrink.errors import CandidateBusy, ConfirmationRequired, FileAccessError, InvalidTransition
from shrink.models.candidate import CandidateFile, CandidateState, SkipReason, StateKind
from shrink.utils import dir_info, remove_path

log = logging.getLogger(__name__)


class ShrinkEngine:
    """Owns the candidate collection and drives every operation on it.

    The collection and the stats aggregator are explicit state of the
    engine, handed by reference to the worker pool. All candidate state
    changes happen under ``self._lock``.
    """

    def __init__(self, config: ShrinkConfig | None = None) -> None:
        # ShrinkConfig validates itself, so a bad value fails here,
        # before any job can be dispatched.
        self.config = config or ShrinkConfig()
        self.scanner = Scanner(self.config)
        self.classifier = Classifier(self.config)
        self.stats_aggregator = StatsAggregator()
        self._lock = threading.Lock()
        self._candidates: dict[str, CandidateFile] = {}
        self._claimed: set[str] = set()
        self._runs: list[ProgressHandle] = []
        self._pool = WorkerPool(
            Compressor(self.config),
            self.stats_aggregator,
            self._lock,
            self.config.worker_count,
        )

    # ── scan ──────────────────────────────────────────────────────────────

    def scan(self, root: Path | str) -> Iterator[CandidateFile]:
        """Walk ``root`` and yield classified candidates as they are found.

        Every call performs a fresh traversal. Yielded candidates replace
        earlier ones for the same path, except candidates that a running
        job or delete still holds, or that a job already finished with. Those
        are yielded as they are; only :meth:`reset` sends them back to
        Pending.
        """
        for entry in self.scanner.scan(root):
            fresh = self.classifier.classify(entry)
            with self._lock:
                known = self._candidates.get(fresh.id)
                if known is not None and (fresh.id in self._claimed or _has_outcome(known)):
                    candidate = known
                else:
                    self._candidates[fresh.id] = fresh
                    candidate = fresh
            yield candidate

    def get(self, candidate_id: str) -> CandidateFile | None:
        """Get a known candidate by its ID."""
        with self._lock:
            return self._candidates.get(candidate_id)

    def candidates(self) -> list[CandidateFile]:
        """All known candidates, biggest first."""
        with self._lock:
            items = list(self._candidates.values())
        return sorted(items, key=lambda c: c.size_bytes, reverse=True)

    def reset(self, candidate_id: str) -> None:
        """Send a skipped or failed candidate back to Pending."""
        with self._lock:
            candidate = self._require(candidate_id)
            candidate.reset()

    # ── compression ───────────────────────────────────────────────────────

    def start_compression(
        self,
        selection: Iterable[str],
        on_event: EventCallback | None = None,
    ) -> ProgressHandle:
        """Queue the selected candidates and start compressing them.

        Only candidates that are pending, eligible and not part of another
        run are queued; the rest of the selection is ignored. Returns the
        run's progress handle without waiting for it.
        """
        accepted: list[CandidateFile] = []
        with self._lock:
            for cid in dict.fromkeys(selection):
                candidate = self._candidates.get(cid)
                if candidate is None:
                    log.warning("Unknown candidate '%s', skipping", cid)
                elif cid in self._claimed:
                    log.info("Candidate %s is already queued, skipping", candidate.path)
                elif candidate.state.kind is not StateKind.PENDING or not candidate.eligible:
                    log.debug("Candidate %s is %s, not queued", candidate.path, candidate.state)
                else:
                    self._claimed.add(cid)
                    accepted.append(candidate)

        handle = self._pool.start(accepted, on_event=on_event, on_finished=self._release)
        with self._lock:
            self._runs = [run for run in self._runs if not run.done]
            self._runs.append(handle)
        return handle

    def _release(self, candidates: list[CandidateFile]) -> None:
        with self._lock:
            for candidate in candidates:
                self._claimed.discard(candidate.id)

    def cancel(self) -> None:
        """Stop dispatching jobs in every active run. Running jobs finish."""
        with self._lock:
            runs = list(self._runs)
        for run in runs:
            if not run.done:
                run.cancel()
        log.info("Cancellation requested for %d run(s)", len(runs))

    # ── delete ────────────────────────────────────────────────────────────

    def delete(self, candidate_id: str, *, confirm: bool) -> int:
        """Remove a candidate's file or directory from disk for good.

        Args:
            candidate_id: ID of a scanned candidate.
            confirm: Must be ``True``; there is no default.

        Returns:
            Number of bytes freed.

        Raises:
            ConfirmationRequired: ``confirm`` is not ``True``.
            KeyError: the ID is unknown.
            CandidateBusy: the candidate is queued, being compressed or being
                deleted by another call.
            InvalidTransition: the candidate was already removed.
            FileAccessError: the removal failed; the state is unchanged.
        """
        if confirm is not True:
            raise ConfirmationRequired("Delete is irreversible and must be confirmed explicitly")

        with self._lock:
            candidate = self._require(candidate_id)
            if candidate_id in self._claimed or candidate.state.kind is StateKind.COMPRESSING:
                raise CandidateBusy(f"{candidate.path} is being compressed or deleted")
            if candidate.state.kind is StateKind.REMOVED:
                raise InvalidTransition(f"{candidate.path} was already removed")
            # Held like a queued job so no run picks it up meanwhile.
            self._claimed.add(candidate_id)
            target = candidate.on_disk_path

        try:
            try:
                freed = _disk_size(target)
                remove_path(target)
            except FileNotFoundError as e:
                raise FileAccessError(f"{target}: no longer exists") from e
            except OSError as e:
                raise FileAccessError(f"{target}: {e}") from e
            with self._lock:
                candidate.transition(CandidateState.removed())
        finally:
            with self._lock:
                self._claimed.discard(candidate_id)

        self.stats_aggregator.record_removal(candidate_id, freed)
        log.info("Deleted %s (%d bytes)", target, freed)
        return freed

    # ── stats ─────────────────────────────────────────────────────────────

    def stats(self) -> AggregateStats:
        """Point-in-time snapshot of the aggregate statistics."""
        return self.stats_aggregator.snapshot()

    def _require(self, candidate_id: str) -> CandidateFile:
        candidate = self._candidates.get(candidate_id)
        if candidate is None:
            raise KeyError(candidate_id)
        return candidate


def _disk_size(path: Path) -> int:
    if path.is_dir() and not path.is_symlink():
        return dir_info(path)[0]
    return path.lstat().st_size


def _has_outcome(candidate: CandidateFile) -> bool:
    """Whether a compression job already decided this candidate's fate."""
    state = candidate.state
    if state.kind in (StateKind.COMPRESSED, StateKind.FAILED):
        return True
    return state == CandidateState.skipped(SkipReason.NO_GAIN)
