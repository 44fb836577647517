"""Tests for the FTS5-backed exact index."""

from __future__ import annotations

import sqlite3

import pytest

from session_search.retrieval.analyzer import build_exact_query
from session_search.retrieval.exact_index import ExactIndex, render_snippet
from session_search.retrieval.types import Identity, IndexedDocument


@pytest.fixture
def index(database) -> ExactIndex:
    database.ensure_schema()
    return ExactIndex(database)


def _doc(session_id: str, source: str = "claude", content: str = "", display: str = "", timestamp: int = 0):
    return IndexedDocument(
        identity=Identity(source, session_id),
        display=display,
        project="proj",
        content=content,
        timestamp=timestamp,
    )


def test_upsert_replaces_single_row(index: ExactIndex) -> None:
    assert index.upsert(_doc("s1", content="first version"))
    assert index.upsert(_doc("s1", content="second version"))
    assert index.count("s1", "claude") == 1
    rows = index.query(build_exact_query("second"))
    assert [row.identity for row in rows] == [Identity("claude", "s1")]
    assert index.query(build_exact_query("first")) == []


def test_unchanged_upsert_is_noop(index: ExactIndex) -> None:
    assert index.upsert(_doc("s1", content="same", timestamp=5)) is True
    assert index.upsert(_doc("s1", content="same", timestamp=5)) is False
    assert index.upsert(_doc("s1", content="same", timestamp=6)) is True


def test_same_session_id_in_two_sources(index: ExactIndex) -> None:
    index.upsert(_doc("dup", "claude", content="shared alpha"))
    index.upsert(_doc("dup", "codex", content="shared beta"))
    assert index.count() == 2
    assert sorted(index.indexed_identities()) == [Identity("claude", "dup"), Identity("codex", "dup")]

    rows = index.query(build_exact_query("shared"), source="codex")
    assert [row.identity for row in rows] == [Identity("codex", "dup")]

    assert index.remove("dup", "claude") == [Identity("claude", "dup")]
    assert index.contains("dup", "codex")
    assert not index.contains("dup", "claude")


def test_remove_without_source_removes_every_source(index: ExactIndex) -> None:
    index.upsert(_doc("dup", "claude", content="x"))
    index.upsert(_doc("dup", "codex", content="y"))
    removed = index.remove("dup")
    assert sorted(removed) == [Identity("claude", "dup"), Identity("codex", "dup")]
    assert index.count() == 0
    assert index.remove("dup") == []


def test_display_outweighs_content(index: ExactIndex) -> None:
    index.upsert(_doc("body", content="deploy deploy deploy pipeline notes"))
    index.upsert(_doc("title", display="deploy", content="unrelated notes"))
    for filler in ("f1", "f2", "f3"):
        index.upsert(_doc(filler, content="nothing relevant"))
    rows = index.query(build_exact_query("deploy"))
    assert rows[0].identity.session_id == "title"
    assert rows[0].rank <= rows[1].rank


def test_query_rows_carry_timestamp_and_highlighted_snippet(index: ExactIndex) -> None:
    index.upsert(_doc("s1", content="use <b>sqlite</b> here", timestamp=1234))
    (row,) = index.query(build_exact_query("sqlite"))
    assert row.timestamp == 1234
    assert '<mark class="search-highlight">sqlite</mark>' in row.snippet
    assert "&lt;b&gt;" in row.snippet


def test_malformed_expression_raises_sqlite_error(index: ExactIndex) -> None:
    index.upsert(_doc("s1", content="text"))
    with pytest.raises(sqlite3.Error):
        index.query('"unterminated')


def test_empty_query_returns_nothing(index: ExactIndex) -> None:
    assert index.query("") == []


def test_iter_documents_and_fetch_contents(index: ExactIndex) -> None:
    index.upsert(_doc("s1", content="alpha", timestamp=7))
    documents = list(index.iter_documents())
    assert [(d.identity, d.timestamp) for d in documents] == [(Identity("claude", "s1"), 7)]
    assert index.fetch_contents([Identity("claude", "s1"), Identity("claude", "missing")]) == {
        Identity("claude", "s1"): "alpha"
    }


def test_render_snippet_escapes_before_marking() -> None:
    assert render_snippet("\ue000a&b\ue001") == '<mark class="search-highlight">a&amp;b</mark>'
