"""Tests for query analysis helpers."""

from __future__ import annotations

from session_search.retrieval.analyzer import (
    build_exact_query,
    determine_exact_signals,
    highlight,
    should_use_fuzzy,
    tokenize,
)


def test_tokenize_lowercases_and_splits_on_separators() -> None:
    assert tokenize("Foo-Bar baz_QUX 42") == ["foo", "bar", "baz", "qux", "42"]
    assert tokenize("") == []
    assert tokenize("--- ...") == []


def test_tokenize_keeps_non_latin_letters() -> None:
    assert tokenize("Résumé 東京") == ["résumé", "東京"]


def test_should_use_fuzzy_requires_three_characters() -> None:
    assert should_use_fuzzy("ab") is False
    assert should_use_fuzzy("  ab  ") is False
    assert should_use_fuzzy("abc") is True
    assert should_use_fuzzy("!!!") is False


def test_signals_for_hyphenated_literal() -> None:
    signals = determine_exact_signals("foo-bar", "some foo-bar text")
    assert signals.exact_literal
    assert signals.exact_phrase
    assert signals.exact_tokens


def test_signals_phrase_across_other_separator() -> None:
    signals = determine_exact_signals("foo bar", "call foo_bar() now")
    assert not signals.exact_literal
    assert signals.exact_phrase
    assert signals.exact_tokens


def test_signals_tokens_only() -> None:
    signals = determine_exact_signals("alpha gamma", "alpha beta gamma")
    assert not signals.exact_literal
    assert not signals.exact_phrase
    assert signals.exact_tokens


def test_signals_single_token_has_no_phrase() -> None:
    signals = determine_exact_signals("alpha", "alpha beta")
    assert signals.exact_literal
    assert not signals.exact_phrase


def test_signals_ignore_markup_and_case() -> None:
    signals = determine_exact_signals("Hello World", "<b>hello</b> world")
    assert signals.exact_literal


def test_signals_empty_query() -> None:
    signals = determine_exact_signals("   ", "anything")
    assert not (signals.exact_literal or signals.exact_phrase or signals.exact_tokens)


def test_signals_regex_metacharacters_do_not_raise() -> None:
    signals = determine_exact_signals("a(b [c", "nothing here")
    assert not signals.exact_phrase


def test_build_exact_query_quotes_tokens() -> None:
    assert build_exact_query("foo-bar") == '"foo" "bar"'
    assert build_exact_query("Hello World") == '"hello" "world"'


def test_build_exact_query_drops_short_tokens_when_long_exist() -> None:
    assert build_exact_query("go to sqlite") == '"sqlite"'
    assert build_exact_query("go to") == '"go" "to"'


def test_build_exact_query_empty() -> None:
    assert build_exact_query("") == ""
    assert build_exact_query('"*()') == ""


def test_highlight_escapes_html_outside_and_inside_marks() -> None:
    result = highlight("<script> sqlite & sql", ["sql", "sqlite"])
    assert result.startswith("&lt;script&gt; ")
    assert '<mark class="search-highlight">sqlite</mark>' in result
    assert "&amp;" in result
    assert result.endswith('<mark class="search-highlight">sql</mark>')


def test_mixed_case_hyphenated_product_name() -> None:
    signals = determine_exact_signals("wa-sqlite", "Using WA-SQLite in browser")
    assert (signals.exact_literal, signals.exact_phrase, signals.exact_tokens) == (True, True, True)


def test_fuzzy_threshold_on_typed_prefixes() -> None:
    assert [should_use_fuzzy(q) for q in ("a", "wa", "was")] == [False, False, True]
