"""Database initialisation and migration helpers.

``init_db(conn)`` is idempotent: safe to call on an existing database.
Incremental schema changes go into ``MIGRATIONS`` and are tracked in a
version table.
"""

from __future__ import annotations

import sqlite3

from backend.config import settings

# (version, sql) pairs applied in order by ``migrate``.
MIGRATIONS: list[tuple[int, str]] = []


def init_db(conn: sqlite3.Connection) -> None:
    """Create the ``blobs`` and ``deployments`` tables, then apply migrations.

    Every DDL statement uses ``IF NOT EXISTS`` so calling this repeatedly on
    the same database is safe.
    """
    sql = settings.schema_path.read_text(encoding="utf-8")
    # executescript() issues an implicit COMMIT first, which is fine for DDL.
    conn.executescript(sql)
    _ensure_version_table(conn)
    migrate(conn)


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
            )
            """
        )


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 if none applied)."""
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) FROM schema_version"
    ).fetchone()
    return row[0] if row else 0


def migrate(conn: sqlite3.Connection, migrations: list[tuple[int, str]] | None = None) -> int:
    """Apply pending migrations and return the resulting schema version."""
    applied = current_version(conn)
    for version, sql in sorted(migrations if migrations is not None else MIGRATIONS):
        if version > applied:
            with conn:
                conn.execute(sql)
                conn.execute(
                    "INSERT INTO schema_version(version) VALUES (?)", (version,)
                )
            applied = version
    return applied
