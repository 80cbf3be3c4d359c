"""SQLite connection factory.

Usage::

    from backend.db.connection import get_connection

    conn = get_connection()
    cursor = conn.execute("SELECT key FROM blobs")
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from backend.config import settings


def get_connection(db_path: Optional[Path | str] = None) -> sqlite3.Connection:
    """Open and configure a SQLite connection.

    Steps performed on every new connection:
    1. Enable ``PRAGMA foreign_keys = ON``.
    2. Switch to WAL journal mode so the API can read while a crawl writes.

    Args:
        db_path: Override the DB path.  Defaults to ``settings.db_path``.
            Pass ``":memory:"`` for a throwaway database.

    Returns:
        A configured :class:`sqlite3.Connection` with ``row_factory`` set to
        :class:`sqlite3.Row` so columns can be accessed by name.
    """
    path = db_path or settings.db_path

    # Create parent directory if needed (no-op for `:memory:`)
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")

    return conn
