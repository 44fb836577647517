"""Test fixtures for Session Search."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point settings at a scratch database and clear cached settings between tests."""
    monkeypatch.setenv("SESSION_SEARCH_DB_PATH", str(tmp_path / "search.db"))
    monkeypatch.delenv("SESSION_SEARCH_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))

    from session_search.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path):
    from session_search.core.config import Settings

    return Settings(db_path=tmp_path / "search.db", watch_roots={})


@pytest.fixture
def service(settings):
    from session_search.retrieval.search import SearchService

    svc = SearchService(settings)
    svc.init()
    yield svc
    svc.close()


@pytest.fixture
def database(tmp_path: Path):
    from session_search.db.sqlite import SQLiteDatabase

    db = SQLiteDatabase(tmp_path / "raw.db")
    db.connect()
    yield db
    db.close()


@pytest.fixture(scope="session")
def sample_transcript() -> str:
    return (
        "user: the sqlite FTS5 index returns nothing for hyphenated names\n"
        "assistant: the unicode61 tokenizer splits foo-bar into two tokens, "
        "so the phrase query has to match both in order."
    )
