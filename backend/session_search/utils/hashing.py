"""Hashing utilities."""

from __future__ import annotations

import hashlib


def content_hash(*parts: str) -> str:
    """Stable digest over text fields; a NUL separator keeps field boundaries distinct."""
    h = hashlib.sha256()
    for index, part in enumerate(parts):
        if index:
            h.update(b"\x00")
        h.update(part.encode("utf-8", errors="surrogatepass"))
    return h.hexdigest()
