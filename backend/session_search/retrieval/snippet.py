"""Snippets for hits that only the fuzzy index found."""

from __future__ import annotations

import re
from typing import Sequence

from session_search.retrieval.analyzer import highlight

_WHITESPACE_RE = re.compile(r"\s+")

SNIPPET_RADIUS = 80
ELLIPSIS = "..."


def build_fuzzy_snippet(text: str, query_tokens: Sequence[str], radius: int = SNIPPET_RADIUS) -> str:
    """Window of ``text`` around the earliest query token, escaped and highlighted.

    Falls back to the opening of the text when no token occurs literally
    (typical for typo matches).
    """
    cleaned = _WHITESPACE_RE.sub(" ", text).strip()
    if not cleaned:
        return ""

    lowered = cleaned.lower()
    first_hit = -1
    for token in query_tokens:
        position = lowered.find(token.lower())
        if position != -1 and (first_hit == -1 or position < first_hit):
            first_hit = position

    if first_hit == -1:
        start, end = 0, min(len(cleaned), radius * 2)
    else:
        start = max(0, first_hit - radius)
        end = min(len(cleaned), first_hit + radius)

    window = cleaned[start:end]
    snippet = highlight(window, query_tokens)
    if start > 0:
        snippet = f"{ELLIPSIS}{snippet}"
    if end < len(cleaned):
        snippet = f"{snippet}{ELLIPSIS}"
    return snippet


__all__ = ["build_fuzzy_snippet"]
