"""Tests for the candidate lifecycle."""

from __future__ import annotations

from pathlib import Path

import pytest

from shrink.errors import InvalidTransition
from shrink.models import CandidateFile, CandidateState, Category, SkipReason, StateKind, candidate_id


def make_candidate(**kwargs) -> CandidateFile:
    defaults = dict(
        id="abc",
        path=Path("/tmp/app.log"),
        size_bytes=100,
        modified_time=0.0,
        category=Category.LOG_FILE,
    )
    defaults.update(kwargs)
    return CandidateFile(**defaults)


class TestCandidateState:
    def test_str_includes_reason(self):
        assert str(CandidateState.skipped(SkipReason.NO_GAIN)) == "skipped(no_gain)"
        assert str(CandidateState.pending()) == "pending"

    def test_terminal_states(self):
        assert not CandidateState.pending().is_terminal
        assert not CandidateState.compressing().is_terminal
        assert CandidateState.compressed().is_terminal
        assert CandidateState.failed("disk full").is_terminal
        assert CandidateState.removed().is_terminal

    def test_failed_requires_a_reason(self):
        assert CandidateState.failed("").reason == "unknown error"


class TestCandidateFile:
    def test_starts_pending(self):
        assert make_candidate().state.kind is StateKind.PENDING

    def test_forward_transitions(self):
        c = make_candidate()
        c.transition(CandidateState.compressing())
        c.transition(CandidateState.compressed())
        c.transition(CandidateState.removed())
        assert c.state.kind is StateKind.REMOVED

    @pytest.mark.parametrize(
        "first, second",
        [
            (CandidateState.compressing(), CandidateState.pending()),
            (CandidateState.compressing(), CandidateState.compressing()),
            (CandidateState.removed(), CandidateState.compressing()),
        ],
    )
    def test_backward_transitions_are_rejected(self, first, second):
        c = make_candidate()
        c.transition(first)
        with pytest.raises(InvalidTransition):
            c.transition(second)

    def test_pending_cannot_jump_to_compressed(self):
        with pytest.raises(InvalidTransition):
            make_candidate().transition(CandidateState.compressed())

    def test_reset_from_failed(self):
        c = make_candidate()
        c.transition(CandidateState.compressing())
        c.transition(CandidateState.failed("boom"))
        c.reset()
        assert c.state == CandidateState.pending()

    def test_reset_from_compressed_is_rejected(self):
        c = make_candidate()
        c.transition(CandidateState.compressing())
        c.transition(CandidateState.compressed())
        with pytest.raises(InvalidTransition):
            c.reset()

    def test_category_is_immutable(self):
        c = make_candidate()
        with pytest.raises(AttributeError):
            c.category = Category.GENERIC
        assert c.category is Category.LOG_FILE

    def test_on_disk_path_follows_compression(self):
        c = make_candidate()
        assert c.on_disk_path == Path("/tmp/app.log")
        c.transition(CandidateState.compressing())
        c.transition(CandidateState.compressed())
        c.output_path = Path("/tmp/app.log.zst")
        assert c.on_disk_path == Path("/tmp/app.log.zst")


def test_candidate_id_is_stable(tmp_path):
    assert candidate_id(tmp_path / "a") == candidate_id(str(tmp_path / "a"))
    assert candidate_id(tmp_path / "a") != candidate_id(tmp_path / "b")
