"""Tests for the in-memory fuzzy index."""

from __future__ import annotations

from session_search.retrieval.fuzzy_index import FuzzyIndex
from session_search.retrieval.types import Identity

A = Identity("claude", "a")
B = Identity("codex", "a")
C = Identity("claude", "c")


def _index() -> FuzzyIndex:
    index = FuzzyIndex()
    index.add(A, "Refactor the websocket reconnect logic")
    index.add(B, "Database migration for postgres")
    index.add(C, "websocket heartbeat timeout")
    return index


def test_exact_term_match() -> None:
    assert _index().query("postgres") == [B]


def test_prefix_match() -> None:
    assert set(_index().query("webs")) == {A, C}


def test_single_typo_and_transposition() -> None:
    index = _index()
    assert index.query("postgrse") == [B]
    assert index.query("heartbaet") == [C]


def test_two_typos_only_for_long_tokens() -> None:
    index = _index()
    assert index.query("migrtoin") == [B]
    assert index.query("tmx") == []


def test_every_token_must_match() -> None:
    index = _index()
    assert index.query("websocket timeout") == [C]
    assert index.query("websocket postgres") == []


def test_better_matches_rank_first() -> None:
    index = FuzzyIndex()
    index.add(A, "reconnect")
    index.add(C, "reconnecting")
    assert index.query("reconnect") == [A, C]


def test_add_replaces_and_remove_forgets() -> None:
    index = _index()
    index.add(B, "something else entirely")
    assert index.query("postgres") == []
    assert len(index) == 3
    assert index.remove(C) is True
    assert index.remove(C) is False
    assert C not in index
    assert index.query("heartbeat") == []


def test_same_session_id_in_two_sources_is_two_documents() -> None:
    index = FuzzyIndex()
    index.add(A, "shared words")
    index.add(B, "shared words")
    assert set(index.query("shared")) == {A, B}


def test_limit_and_empty_query() -> None:
    index = _index()
    assert index.query("") == []
    assert len(index.query("websocket", limit=1)) == 1
