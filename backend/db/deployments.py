"""CRUD operations for the ``deployments`` table."""

from __future__ import annotations

import json
import sqlite3
import uuid
from time import time
from typing import Any, Optional

from backend.db.models import Deployment


def _row_to_deployment(row: sqlite3.Row) -> Deployment:
    return Deployment(
        id=row["id"],
        hostname=row["hostname"],
        manifest_id=row["manifest_id"],
        manifest_url=row["manifest_url"],
        manifest=json.loads(row["manifest"]),
        route_count=row["route_count"],
        issue_count=row["issue_count"],
        total_bytes=row["total_bytes"],
        estimated_cost=row["estimated_cost"],
        dry_run=bool(row["dry_run"]),
        created_at=row["created_at"],
    )


def create_deployment(
    conn: sqlite3.Connection,
    hostname: str,
    manifest_id: str,
    manifest_url: str,
    manifest: dict[str, Any],
    issue_count: int = 0,
    total_bytes: int = 0,
    estimated_cost: float = 0.0,
    dry_run: bool = False,
) -> Deployment:
    """Record a finished publish run and return the stored row."""
    did = str(uuid.uuid4())
    with conn:
        conn.execute(
            """
            INSERT INTO deployments (
                id, hostname, manifest_id, manifest_url, manifest, route_count,
                issue_count, total_bytes, estimated_cost, dry_run, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                did, hostname, manifest_id, manifest_url, json.dumps(manifest),
                len(manifest.get("paths", {})), issue_count, total_bytes,
                estimated_cost, int(dry_run), int(time()),
            ),
        )
    return get_deployment(conn, did)  # type: ignore[return-value]


def get_deployment(conn: sqlite3.Connection, deployment_id: str) -> Optional[Deployment]:
    row = conn.execute(
        "SELECT * FROM deployments WHERE id = ?", (deployment_id,)
    ).fetchone()
    return _row_to_deployment(row) if row else None


def list_deployments(
    conn: sqlite3.Connection,
    hostname: Optional[str] = None,
    limit: int = 50,
) -> list[Deployment]:
    """Most recent deployments first, optionally for one hostname."""
    if hostname:
        rows = conn.execute(
            "SELECT * FROM deployments WHERE hostname = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (hostname, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM deployments ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [_row_to_deployment(r) for r in rows]
