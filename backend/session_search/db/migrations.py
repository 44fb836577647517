"""Versioned schema migrations for the search database.

Schema history:

* version 0 (legacy, ``user_version`` never set): ``session_index_meta`` keyed by
  ``session_id`` alone, optionally without ``source``/``session_timestamp``/
  ``content_hash`` columns; very old databases also lack the ``source`` column
  in ``sessions_fts``.
* version 1: composite ``(source, session_id)`` key but no ``session_timestamp``
  or ``content_hash`` columns.
* version 2 (current): composite key plus timestamp and hash columns, and a
  metadata row for every indexed document.

Every step inspects the actual table shape rather than trusting the recorded
version, so a database that was half-upgraded by hand still converges.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from session_search.utils.time import now_ms

if TYPE_CHECKING:
    from session_search.db.sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

FTS_TABLE = "sessions_fts"
META_TABLE = "session_index_meta"

CREATE_FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS {name} USING fts5(
  session_id UNINDEXED,
  source UNINDEXED,
  display,
  project,
  content,
  tokenize='unicode61'
)
"""

CREATE_META_SQL = """
CREATE TABLE IF NOT EXISTS {name} (
  session_id TEXT NOT NULL,
  source TEXT NOT NULL,
  content_hash TEXT,
  session_timestamp INTEGER DEFAULT 0,
  last_indexed_at INTEGER,
  PRIMARY KEY (source, session_id)
)
"""

UNKNOWN_SOURCE = "unknown"


def apply_migrations(db: "SQLiteDatabase") -> int:
    """Upgrade the database in place to ``SCHEMA_VERSION`` inside one transaction."""
    conn = db.connect()
    version = db.user_version()
    if version >= SCHEMA_VERSION and db.table_exists(FTS_TABLE) and db.table_exists(META_TABLE):
        return version

    conn.execute("BEGIN IMMEDIATE")
    try:
        _migrate_fts_table(db)
        _migrate_meta_key(db)
        _add_missing_meta_columns(db)
        _backfill_meta_rows(db)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    if version < SCHEMA_VERSION:
        logger.info("Search schema migrated from version %s to %s", version, SCHEMA_VERSION)
    return SCHEMA_VERSION


def _column_names(db: "SQLiteDatabase", table: str) -> set[str]:
    return {row["name"] for row in db.table_columns(table)}


def _migrate_fts_table(db: "SQLiteDatabase") -> None:
    if not db.table_exists(FTS_TABLE):
        db.execute(CREATE_FTS_SQL.format(name=FTS_TABLE))
        return
    if "source" in _column_names(db, FTS_TABLE):
        return

    logger.info("Rebuilding %s with a source column", FTS_TABLE)
    source_expr = f"'{UNKNOWN_SOURCE}'"
    if db.table_exists(META_TABLE) and "source" in _column_names(db, META_TABLE):
        source_expr = (
            f"COALESCE((SELECT m.source FROM {META_TABLE} m "
            f"WHERE m.session_id = f.session_id LIMIT 1), '{UNKNOWN_SOURCE}')"
        )
    staging = f"{FTS_TABLE}_v2"
    db.execute(f"DROP TABLE IF EXISTS {staging}")
    db.execute(CREATE_FTS_SQL.format(name=staging))
    db.execute(
        f"""
        INSERT INTO {staging} (session_id, source, display, project, content)
        SELECT f.session_id, {source_expr}, f.display, f.project, f.content
        FROM {FTS_TABLE} f
        """
    )
    db.execute(f"DROP TABLE {FTS_TABLE}")
    db.execute(f"ALTER TABLE {staging} RENAME TO {FTS_TABLE}")


def _has_composite_key(db: "SQLiteDatabase") -> bool:
    columns = db.table_columns(META_TABLE)
    keyed = {row["name"] for row in columns if row["pk"] > 0}
    return {"source", "session_id"} <= keyed


def _migrate_meta_key(db: "SQLiteDatabase") -> None:
    if not db.table_exists(META_TABLE):
        db.execute(CREATE_META_SQL.format(name=META_TABLE))
        return
    if _has_composite_key(db):
        return

    logger.info("Migrating %s to a (source, session_id) key", META_TABLE)
    columns = _column_names(db, META_TABLE)
    fts_source = (
        f"(SELECT f.source FROM {FTS_TABLE} f WHERE f.session_id = old.session_id LIMIT 1)"
    )
    if "source" in columns:
        source_expr = f"COALESCE(NULLIF(old.source, ''), {fts_source}, '{UNKNOWN_SOURCE}')"
    else:
        source_expr = f"COALESCE({fts_source}, '{UNKNOWN_SOURCE}')"
    hash_expr = "old.content_hash" if "content_hash" in columns else "NULL"
    timestamp_expr = "COALESCE(old.session_timestamp, 0)" if "session_timestamp" in columns else "0"
    indexed_expr = "old.last_indexed_at" if "last_indexed_at" in columns else "NULL"

    staging = f"{META_TABLE}_v2"
    db.execute(f"DROP TABLE IF EXISTS {staging}")
    db.execute(CREATE_META_SQL.format(name=staging))
    db.execute(
        f"""
        INSERT OR REPLACE INTO {staging}
          (session_id, source, content_hash, session_timestamp, last_indexed_at)
        SELECT old.session_id, {source_expr}, {hash_expr}, {timestamp_expr}, {indexed_expr}
        FROM {META_TABLE} old
        """
    )
    db.execute(f"DROP TABLE {META_TABLE}")
    db.execute(f"ALTER TABLE {staging} RENAME TO {META_TABLE}")


def _add_missing_meta_columns(db: "SQLiteDatabase") -> None:
    columns = _column_names(db, META_TABLE)
    if "session_timestamp" not in columns:
        db.execute(f"ALTER TABLE {META_TABLE} ADD COLUMN session_timestamp INTEGER DEFAULT 0")
    if "content_hash" not in columns:
        db.execute(f"ALTER TABLE {META_TABLE} ADD COLUMN content_hash TEXT")
    if "last_indexed_at" not in columns:
        db.execute(f"ALTER TABLE {META_TABLE} ADD COLUMN last_indexed_at INTEGER")


def _backfill_meta_rows(db: "SQLiteDatabase") -> None:
    # documents written before the metadata table existed still count as indexed
    cursor = db.execute(
        f"""
        INSERT OR IGNORE INTO {META_TABLE}
          (session_id, source, content_hash, session_timestamp, last_indexed_at)
        SELECT f.session_id, f.source, NULL, 0, ?
        FROM {FTS_TABLE} f
        WHERE NOT EXISTS (
          SELECT 1 FROM {META_TABLE} m
          WHERE m.session_id = f.session_id AND m.source = f.source
        )
        """,
        [now_ms()],
    )
    if cursor.rowcount and cursor.rowcount > 0:
        logger.info("Backfilled %s metadata rows from %s", cursor.rowcount, FTS_TABLE)


__all__ = ["SCHEMA_VERSION", "FTS_TABLE", "META_TABLE", "apply_migrations"]
