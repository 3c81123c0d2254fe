"""Fixed-size compression worker pool and its progress handle."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterator

from shrink.core.compressor import Compressor
from shrink.core.stats import StatsAggregator
from shrink.errors import CompressionError, FileAccessError, IntegrityError
from shrink.models.candidate import CandidateFile, CandidateState, StateKind
from shrink.models.compression_result import CompressionResult, ProgressEvent

log = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], None]
FinishedCallback = Callable[[list[CandidateFile]], None]

# Minimum number of bytes between two in-flight progress events of one job.
_PROGRESS_INTERVAL = 4 << 20

_END = object()


class ProgressHandle:
    """Event stream and control surface of one compression run.

    Iterating the handle blocks and yields every event until the run is
    over; it is meant for a single consumer. Use :meth:`subscribe` to fan
    events out to several listeners. Listeners are called from worker
    threads.
    """

    def __init__(self, total: int) -> None:
        self.total = total
        self._events: queue.Queue[object] = queue.Queue()
        self._listeners: list[EventCallback] = []
        self._results: list[CompressionResult] = []
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._done = threading.Event()

    def subscribe(self, callback: EventCallback) -> None:
        """Call ``callback`` for every event published from now on."""
        with self._lock:
            self._listeners.append(callback)

    def cancel(self) -> None:
        """Stop dispatching new jobs. Jobs already running finish normally."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every worker has exited. Returns False on timeout."""
        return self._done.wait(timeout)

    @property
    def results(self) -> list[CompressionResult]:
        """Results collected so far, in completion order."""
        with self._lock:
            return list(self._results)

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._events.get()
            if item is _END:
                # Leave the marker for any other iterator.
                self._events.put(_END)
                return
            yield item  # type: ignore[misc]

    def _publish(self, event: ProgressEvent) -> None:
        self._events.put(event)
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                log.exception("Progress listener failed for candidate %s", event.candidate_id)

    def _add_result(self, result: CompressionResult) -> None:
        with self._lock:
            self._results.append(result)

    def _finish(self) -> None:
        self._done.set()
        self._events.put(_END)


class WorkerPool:
    """Runs compression jobs on ``worker_count`` threads.

    Jobs go through a materialized queue; a worker takes one candidate at
    a time, so no candidate is ever handled by two workers. Cancellation
    is checked only when a worker takes the next job.
    """

    def __init__(
        self,
        compressor: Compressor,
        stats: StatsAggregator,
        lock: threading.Lock,
        worker_count: int,
    ) -> None:
        self.compressor = compressor
        self.stats = stats
        self.worker_count = worker_count
        self._lock = lock

    def start(
        self,
        candidates: list[CandidateFile],
        on_event: EventCallback | None = None,
        on_finished: FinishedCallback | None = None,
    ) -> ProgressHandle:
        """Start processing ``candidates`` in the background and return at once.

        ``on_event`` is subscribed before the first job starts.
        ``on_finished`` runs with the original candidate list after the
        last worker exits and before the handle reports done.
        """
        handle = ProgressHandle(total=len(candidates))
        if on_event:
            handle.subscribe(on_event)
        jobs: queue.Queue[CandidateFile] = queue.Queue()
        for candidate in candidates:
            jobs.put(candidate)

        max_workers = max(1, min(self.worker_count, len(candidates)))
        remaining = max_workers
        counter_lock = threading.Lock()

        def _worker_done(future: Future[None]) -> None:
            nonlocal remaining
            if (exc := future.exception()) is not None:
                log.error("Compression worker died", exc_info=exc)
            with counter_lock:
                remaining -= 1
                last = remaining == 0
            if not last:
                return
            try:
                if on_finished:
                    on_finished(candidates)
            finally:
                handle._finish()
                log.debug("Compression run finished: %d results", len(handle.results))

        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shrink-worker")
        futures = [executor.submit(self._work, jobs, handle) for _ in range(max_workers)]
        for future in futures:
            future.add_done_callback(_worker_done)
        # Returns at once; the workers drain the queue and then exit.
        executor.shutdown(wait=False)
        log.info("Started %d workers for %d candidates", max_workers, len(candidates))
        return handle

    def _work(self, jobs: queue.Queue[CandidateFile], handle: ProgressHandle) -> None:
        while True:
            try:
                candidate = jobs.get_nowait()
            except queue.Empty:
                return
            if handle.cancelled:
                log.debug("Run cancelled, leaving %s pending", candidate.path)
                continue
            self._process(candidate, handle)

    def _process(self, candidate: CandidateFile, handle: ProgressHandle) -> None:
        with self._lock:
            if candidate.state.kind is not StateKind.PENDING:
                log.warning("Candidate %s is %s, not pending; skipping", candidate.path, candidate.state)
                return
            candidate.transition(CandidateState.compressing())

        size = candidate.size_bytes
        handle._publish(ProgressEvent(candidate.id, CandidateState.compressing(), size, 0))

        processed = 0
        last_reported = 0

        def on_progress(nbytes: int) -> None:
            nonlocal processed, last_reported
            processed = nbytes
            if processed - last_reported >= _PROGRESS_INTERVAL:
                last_reported = processed
                handle._publish(ProgressEvent(candidate.id, CandidateState.compressing(), size, processed))

        start = time.monotonic()
        try:
            result = self.compressor.compress(candidate, on_progress)
        except (FileAccessError, CompressionError, IntegrityError) as e:
            log.warning("Failed to compress %s: %s", candidate.path, e)
            result = _failed_result(candidate, str(e), start)
        except Exception as e:
            log.exception("Unexpected error while compressing %s", candidate.path)
            result = _failed_result(candidate, f"unexpected error: {e}", start)

        with self._lock:
            candidate.transition(result.state)
            if result.output_path is not None:
                candidate.output_path = result.output_path

        self.stats.record(result)
        handle._add_result(result)

        failed = result.state.kind is StateKind.FAILED
        handle._publish(
            ProgressEvent(
                candidate_id=candidate.id,
                state=result.state,
                original_size=result.original_size,
                bytes_processed=processed,
                compressed_size=None if failed else result.compressed_size,
                error=result.state.reason if failed else None,
            )
        )


def _failed_result(candidate: CandidateFile, reason: str, start: float) -> CompressionResult:
    return CompressionResult(
        candidate_id=candidate.id,
        original_size=candidate.size_bytes,
        compressed_size=candidate.size_bytes,
        elapsed_seconds=time.monotonic() - start,
        state=CandidateState.failed(reason),
    )
