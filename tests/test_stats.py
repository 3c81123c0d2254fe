"""Tests for the stats aggregator and the efficiency score."""

from __future__ import annotations

import threading

import pytest

from shrink.core.stats import REFERENCE_RATIO, AggregateStats, StatsAggregator, efficiency_score
from shrink.models import CandidateState, CompressionResult, SkipReason, StateKind

GIB = 1 << 30


def result(cid: str, original: int, packed: int, state: CandidateState | None = None, elapsed: float = 1.0):
    return CompressionResult(cid, original, packed, elapsed, state or CandidateState.compressed())


class TestEfficiencyScore:
    def test_empty_is_zero(self):
        assert efficiency_score(0, 0, 0.0) == 0.0
        assert AggregateStats().score == 0.0

    def test_reference_run_scores_one(self):
        packed = int(GIB / REFERENCE_RATIO)
        assert efficiency_score(GIB, packed, 10.0) == pytest.approx(1.0, rel=1e-6)

    def test_better_ratio_scores_higher(self):
        scores = [efficiency_score(GIB, GIB // r, 10.0) for r in (1, 2, 4, 8)]
        assert scores == sorted(scores)
        assert len(set(scores)) == 4

    def test_faster_scores_higher(self):
        assert efficiency_score(GIB, GIB // 3, 5.0) > efficiency_score(GIB, GIB // 3, 20.0)

    def test_time_is_normalized_by_size(self):
        small = efficiency_score(GIB // 4, GIB // 12, 2.5)
        big = efficiency_score(GIB, GIB // 3, 10.0)
        assert small == pytest.approx(big)


class TestStatsAggregator:
    def test_totals(self):
        stats = StatsAggregator()
        stats.record(result("a", 1000, 100))
        stats.record(result("b", 500, 500, CandidateState.skipped(SkipReason.NO_GAIN)))
        stats.record(result("c", 700, 700, CandidateState.failed("disk full")))

        snap = stats.snapshot()
        assert snap.original_bytes == 1500
        assert snap.compressed_bytes == 600
        assert snap.saved_bytes == 900
        assert snap.ratio == pytest.approx(2.5)
        assert snap.count(StateKind.COMPRESSED) == 1
        assert snap.count(StateKind.SKIPPED) == 1
        assert snap.count(StateKind.FAILED) == 1
        assert snap.failure_reasons == {"disk full": 1}
        assert snap.elapsed_seconds == pytest.approx(3.0)

    def test_rerecord_replaces_previous_result(self):
        stats = StatsAggregator()
        stats.record(result("a", 1000, 1000, CandidateState.failed("busy")))
        stats.record(result("a", 1000, 200))

        snap = stats.snapshot()
        assert snap.counts == {StateKind.COMPRESSED: 1}
        assert snap.failure_reasons == {}
        assert snap.original_bytes == 1000

    def test_removal_counted_once(self):
        stats = StatsAggregator()
        stats.record_removal("a", 4096)
        stats.record_removal("a", 4096)
        snap = stats.snapshot()
        assert snap.count(StateKind.REMOVED) == 1
        assert snap.removed_bytes == 4096

    def test_snapshot_is_detached(self):
        stats = StatsAggregator()
        snap = stats.snapshot()
        stats.record(result("a", 10, 5))
        assert snap.original_bytes == 0

    def test_concurrent_records(self):
        stats = StatsAggregator()

        def feed(offset: int) -> None:
            for i in range(500):
                stats.record(result(f"{offset}-{i}", 100, 40, elapsed=0.0))

        threads = [threading.Thread(target=feed, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = stats.snapshot()
        assert snap.count(StateKind.COMPRESSED) == 4000
        assert snap.saved_bytes == 4000 * 60
