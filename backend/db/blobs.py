"""Key/value blob store on the ``blobs`` table.

Decouples extraction from publishing: a crawl writes every page and asset
here, and a later publish run reads them back by key prefix.
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Iterable, Optional

from backend.db.models import Blob

# Stay well under SQLite's bound-parameter limit.
_CHUNK = 500


def _row_to_blob(row: sqlite3.Row) -> Blob:
    return Blob(
        key=row["key"],
        content=bytes(row["content"]),
        content_type=row["content_type"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def put_blob(
    conn: sqlite3.Connection,
    key: str,
    content: bytes,
    content_type: str = "application/octet-stream",
    metadata: Optional[dict[str, Any]] = None,
) -> Blob:
    """Insert or replace the blob stored under *key* and return it."""
    now = int(time())
    blob = Blob(key, content, content_type, metadata or {}, now, now)
    with conn:
        conn.execute(
            """
            INSERT INTO blobs (key, content, content_type, metadata, size, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                content = excluded.content,
                content_type = excluded.content_type,
                metadata = excluded.metadata,
                size = excluded.size,
                updated_at = excluded.updated_at
            """,
            (key, content, content_type, blob.metadata_json(), blob.size, now, now),
        )
    return blob


def get_blob(conn: sqlite3.Connection, key: str) -> Optional[Blob]:
    """Fetch a single blob.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM blobs WHERE key = ?", (key,)).fetchone()
    return _row_to_blob(row) if row else None


def list_keys(conn: sqlite3.Connection, prefix: str = "") -> list[str]:
    """Return every key starting with *prefix*, sorted."""
    rows = conn.execute(
        "SELECT key FROM blobs WHERE substr(key, 1, ?) = ? ORDER BY key",
        (len(prefix), prefix),
    ).fetchall()
    return [r["key"] for r in rows]


def get_many(conn: sqlite3.Connection, keys: Iterable[str]) -> dict[str, Blob]:
    """Fetch several blobs at once; missing keys are simply absent from the result."""
    keys = list(dict.fromkeys(keys))
    found: dict[str, Blob] = {}
    for start in range(0, len(keys), _CHUNK):
        chunk = keys[start:start + _CHUNK]
        placeholders = ",".join("?" for _ in chunk)
        rows = conn.execute(
            f"SELECT * FROM blobs WHERE key IN ({placeholders})", chunk
        ).fetchall()
        for row in rows:
            found[row["key"]] = _row_to_blob(row)
    return found


def delete_prefix(conn: sqlite3.Connection, prefix: str) -> int:
    """Delete every blob under *prefix*; returns the number removed."""
    if not prefix:
        raise ValueError("refusing to delete the whole blob store")
    with conn:
        cursor = conn.execute(
            "DELETE FROM blobs WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        )
    return cursor.rowcount
