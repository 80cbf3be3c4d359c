"""Dataclass models representing DB rows.

These are plain Python objects, not ORM models.  The DB layer serialises
to and from these types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Blob:
    key: str
    content: bytes
    content_type: str = "application/octet-stream"
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    @property
    def size(self) -> int:
        return len(self.content)

    def metadata_json(self) -> str:
        """Serialise metadata dict to a JSON string for storage."""
        return json.dumps(self.metadata, sort_keys=True)


@dataclass
class Deployment:
    id: str
    hostname: str
    manifest_id: str
    manifest_url: str
    manifest: dict[str, Any]
    route_count: int
    issue_count: int
    total_bytes: int
    estimated_cost: float
    dry_run: bool
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hostname": self.hostname,
            "manifest_id": self.manifest_id,
            "manifest_url": self.manifest_url,
            "route_count": self.route_count,
            "issue_count": self.issue_count,
            "total_bytes": self.total_bytes,
            "estimated_cost": self.estimated_cost,
            "dry_run": self.dry_run,
            "created_at": self.created_at,
        }
