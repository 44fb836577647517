"""Query analysis: tokenization, exactness signals and FTS query building."""

from __future__ import annotations

import html
import re
from typing import Sequence

from session_search.retrieval.types import ExactSignals

# letters and digits of any script; underscore counts as a separator
_TOKEN_RE = re.compile(r"[^\W_]+")
_MARKUP_RE = re.compile(r"<[^>]+>")
_SEPARATOR_PATTERN = r"[\W_]+"

MIN_FUZZY_QUERY_LENGTH = 3
MIN_EXACT_TOKEN_LENGTH = 3

HIGHLIGHT_OPEN = '<mark class="search-highlight">'
HIGHLIGHT_CLOSE = "</mark>"


def tokenize(text: str) -> list[str]:
    """Lowercase ``text`` and return its maximal runs of Unicode letters/digits."""
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def should_use_fuzzy(query: str) -> bool:
    """Skip approximate matching for 1-2 character prefixes typed so far."""
    trimmed = query.strip()
    if len(trimmed) < MIN_FUZZY_QUERY_LENGTH:
        return False
    return len(tokenize(trimmed)) > 0


def strip_markup(text: str) -> str:
    return _MARKUP_RE.sub("", text)


def escape_html(text: str) -> str:
    return html.escape(text, quote=True)


def determine_exact_signals(query: str, haystack: str) -> ExactSignals:
    """Compare the raw query against ``haystack`` for literal, phrase and token hits."""
    normalized_query = query.strip().lower()
    if not normalized_query:
        return ExactSignals()

    normalized_haystack = strip_markup(haystack).lower()
    tokens = tokenize(normalized_query)

    exact_literal = normalized_query in normalized_haystack
    exact_tokens = bool(tokens) and all(token in normalized_haystack for token in tokens)

    exact_phrase = False
    if len(tokens) > 1:
        if " ".join(tokens) in normalized_haystack:
            exact_phrase = True
        else:
            exact_phrase = _separator_phrase_match(tokens, normalized_haystack)

    return ExactSignals(
        exact_literal=exact_literal,
        exact_phrase=exact_phrase,
        exact_tokens=exact_tokens,
    )


def _separator_phrase_match(tokens: Sequence[str], haystack: str) -> bool:
    pattern = _SEPARATOR_PATTERN.join(re.escape(token) for token in tokens)
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error:
        return False
    return compiled.search(haystack) is not None


def select_exact_tokens(tokens: Sequence[str]) -> list[str]:
    """Drop 1-2 character tokens when a longer token is available."""
    long_tokens = [token for token in tokens if len(token) >= MIN_EXACT_TOKEN_LENGTH]
    return long_tokens if long_tokens else list(tokens)


def build_exact_query(query: str) -> str:
    """Render ``query`` as an FTS5 expression of quoted, implicitly AND-ed tokens.

    Returns an empty string when there is nothing to search for.
    """
    tokens = tokenize(query)
    if not tokens:
        return ""
    return " ".join(_quote_fts_token(token) for token in select_exact_tokens(tokens))


def _quote_fts_token(token: str) -> str:
    return '"' + token.replace('"', '""') + '"'


def highlight(text: str, tokens: Sequence[str]) -> str:
    """HTML-escape ``text`` and wrap case-insensitive token hits in highlight markup."""
    # longest first so "sqlite" wins over "sql" at the same offset
    ordered = sorted({token for token in tokens if token}, key=len, reverse=True)
    if not ordered:
        return escape_html(text)
    pattern = re.compile("|".join(re.escape(token) for token in ordered), re.IGNORECASE)
    parts: list[str] = []
    cursor = 0
    for match in pattern.finditer(text):
        parts.append(escape_html(text[cursor : match.start()]))
        parts.append(f"{HIGHLIGHT_OPEN}{escape_html(match.group(0))}{HIGHLIGHT_CLOSE}")
        cursor = match.end()
    parts.append(escape_html(text[cursor:]))
    return "".join(parts)


__all__ = [
    "tokenize",
    "should_use_fuzzy",
    "strip_markup",
    "escape_html",
    "determine_exact_signals",
    "select_exact_tokens",
    "build_exact_query",
    "highlight",
    "HIGHLIGHT_OPEN",
    "HIGHLIGHT_CLOSE",
]
