"""Schema migrations for the article store.

Version 1 is the whole of schema.sql; later versions are small ALTER/INDEX
steps applied on top of existing databases.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import List, NamedTuple

logger = logging.getLogger(__name__)

SCHEMA_SQL_PATH = Path(__file__).parent / "schema.sql"


class Migration(NamedTuple):
    version: int
    description: str
    script: str


def _migrations() -> List[Migration]:
    return [
        Migration(
            1,
            "Base schema: sources, categories, articles, articles_fts",
            SCHEMA_SQL_PATH.read_text(encoding="utf-8"),
        ),
        Migration(
            2,
            "Index articles by (source_id, external_id) for source-scoped dedup",
            "CREATE INDEX IF NOT EXISTS idx_articles_source_external "
            "ON articles(source_id, external_id);",
        ),
    ]


def get_current_version(conn: sqlite3.Connection) -> int:
    """Highest applied version; 0 for an empty database."""
    try:
        (version,) = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError:
        return 0
    return version or 0


def pending_migrations(conn: sqlite3.Connection) -> List[Migration]:
    current = get_current_version(conn)
    return [m for m in _migrations() if m.version > current]


def apply_migrations(db_path: str) -> int:
    """Bring the database at db_path up to the latest version and return it."""
    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

        pending = pending_migrations(conn)
        for migration in pending:
            logger.info("Applying migration v%d: %s", migration.version, migration.description)
            try:
                conn.executescript(migration.script)
                conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (migration.version, migration.description),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                logger.exception("Migration v%d failed", migration.version)
                raise

        version = get_current_version(conn)

    if pending:
        logger.info("Applied %d migration(s), schema at v%d", len(pending), version)
    else:
        logger.debug("Schema up to date at v%d", version)
    return version
