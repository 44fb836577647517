"""Tests for coverage accounting."""

from __future__ import annotations

from session_search.retrieval.coverage import CoverageTracker, compute_coverage
from session_search.retrieval.types import Identity


def test_compute_coverage_accepts_all_identity_forms() -> None:
    snapshot = compute_coverage(
        {"claude": ["a", "b", "c"], "codex": ["x"]},
        {Identity("claude", "a"), "claude:b", "x"},
        dirty_count=0,
    )
    assert snapshot.coverage.indexed_sessions == 3
    assert snapshot.coverage.total_sessions == 4
    assert snapshot.coverage.by_source["claude"].indexed == 2
    assert snapshot.coverage.by_source["codex"].total == 1
    assert snapshot.partial is True


def test_complete_coverage_is_not_partial() -> None:
    snapshot = compute_coverage({"claude": ["a"]}, {Identity("claude", "a")}, dirty_count=0)
    assert snapshot.partial is False
    assert snapshot.coverage.last_updated_at > 0


def test_dirty_sessions_force_partial() -> None:
    snapshot = compute_coverage({"claude": ["a"]}, {Identity("claude", "a")}, dirty_count=1)
    assert snapshot.partial is True


def test_empty_catalog_is_complete() -> None:
    snapshot = compute_coverage({}, set(), dirty_count=0)
    assert snapshot.partial is False
    assert snapshot.coverage.total_sessions == 0


def test_tracker_keeps_sources_apart() -> None:
    tracker = CoverageTracker()
    tracker.set_expected([("shared", "claude"), ("shared", "codex")])
    tracker.mark_indexed(Identity("claude", "shared"))
    snapshot = tracker.snapshot()
    assert snapshot.coverage.indexed_sessions == 1
    assert snapshot.coverage.by_source["codex"].indexed == 0
    assert snapshot.partial is True
    assert tracker.is_indexed("shared", "claude")
    assert not tracker.is_indexed("shared", "codex")


def test_tracker_dirty_set_is_keyed_by_session_id() -> None:
    tracker = CoverageTracker()
    tracker.mark_dirty("b")
    tracker.mark_dirty("a")
    tracker.mark_dirty("a")
    assert tracker.dirty_snapshot() == ["a", "b"]
    assert tracker.dirty_snapshot() == ["a", "b"]
    assert tracker.drain_dirty() == ["a", "b"]
    assert tracker.dirty_snapshot() == []


def test_forget_expected_for_one_or_all_sources() -> None:
    tracker = CoverageTracker()
    tracker.set_expected([("s1", "claude"), ("s1", "codex"), ("s2", "claude")])
    tracker.forget_expected("s1", "codex")
    assert sorted(tracker.expected_identities()) == [Identity("claude", "s1"), Identity("claude", "s2")]
    tracker.forget_expected("s1")
    assert tracker.expected_identities() == [Identity("claude", "s2")]


def test_partial_coverage_across_sources() -> None:
    snapshot = compute_coverage({"claude": ["a", "b"], "codex": ["c"]}, {"a"}, dirty_count=0)
    assert snapshot.partial is True
    assert snapshot.coverage.total_sessions == 3
    assert snapshot.coverage.indexed_sessions == 1
