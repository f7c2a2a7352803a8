"""
SQLite store for media assets and their EXIF records.

`initialize_database` creates a new library from the bundled `schema.sql` or
brings an older one forward one version at a time through `MIGRATIONS`.
Connections return `sqlite3.Row` rows and enforce foreign keys, so deleting an
asset drops its EXIF record.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
SCHEMA_VERSION = 2


def load_schema_sql() -> str:
    return SCHEMA_PATH.read_text(encoding="utf-8")


def apply_schema(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.executescript(load_schema_sql())


def connect(db_path: Path) -> sqlite3.Connection:
    """Open `db_path` for use on the calling thread."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def schema_version(conn: sqlite3.Connection) -> Optional[int]:
    """Stored version, or None for a database that has no version table yet."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if has_table is None:
        return None
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row else None


def _store_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT INTO schema_version (id, version) VALUES (1, ?) "
        "ON CONFLICT(id) DO UPDATE SET version = excluded.version",
        (version,),
    )


def _add_raw_exif_column(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(exif_record)")}
    if "raw_exif" not in columns:
        conn.execute("ALTER TABLE exif_record ADD COLUMN raw_exif TEXT;")


# version -> step that upgrades a database from that version to the next
MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _add_raw_exif_column,
}


def initialize_database(db_path: Path) -> sqlite3.Connection:
    """Open the library database, creating or upgrading it as needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path)

    current = schema_version(conn)
    if current is None:
        apply_schema(conn)
        with conn:
            _store_version(conn, SCHEMA_VERSION)
        LOGGER.info("Created media database at %s (schema v%d)", db_path, SCHEMA_VERSION)
    elif current < SCHEMA_VERSION:
        try:
            migrate(conn, current)
        except Exception:
            conn.close()
            raise
        LOGGER.info("Upgraded media database at %s from v%d to v%d", db_path, current, SCHEMA_VERSION)
    elif current > SCHEMA_VERSION:
        conn.close()
        raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}")
    return conn


def migrate(conn: sqlite3.Connection, from_version: int) -> None:
    """Run each step from `from_version` up to SCHEMA_VERSION, then record the new version."""
    with conn:
        for version in range(from_version, SCHEMA_VERSION):
            step = MIGRATIONS.get(version)
            if step is None:
                raise RuntimeError(f"No migration from schema version {version}")
            step(conn)
        _store_version(conn, SCHEMA_VERSION)
