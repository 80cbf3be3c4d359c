"""Build the gateway routing manifest from a path → identifier map.

Wire format::

    {
      "manifest": "arweave/paths",
      "version": "0.1.0",
      "index": {"path": "index.html"},
      "paths": {"index.html": {"id": "<identifier>"}, ...}
    }

Paths never carry a leading slash.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from backend.config import settings
from backend.errors import EmptyManifest
from backend.publish.pathmap import PathIdentifierMap

MANIFEST_CONTENT_TYPE = "application/x.arweave-manifest+json"
INDEX_ENTRY = "index.html"
_INDEX_SUFFIX = "/" + INDEX_ENTRY


@dataclass(frozen=True)
class Manifest:
    default_entry: str
    routes: dict[str, str]
    schema: str = field(default_factory=lambda: settings.manifest_schema)
    version: str = field(default_factory=lambda: settings.manifest_version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "manifest": self.schema,
            "version": self.version,
            "index": {"path": self.default_entry},
            "paths": {path: {"id": ident} for path, ident in sorted(self.routes.items())},
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Manifest":
        return cls(
            default_entry=data["index"]["path"],
            routes={path: entry["id"] for path, entry in data["paths"].items()},
            schema=data["manifest"],
            version=data["version"],
        )


def build_manifest(
    path_map: Union[PathIdentifierMap, Mapping[str, str]],
    aliases: bool = False,
) -> Manifest:
    """Return the manifest for *path_map*.

    The default entry is the root ``index.html`` when present, otherwise the
    lexicographically first route.  With *aliases*, each ``dir/index.html``
    route is also reachable as ``dir`` unless that route already exists.

    Raises:
        EmptyManifest: *path_map* has no entries.
    """
    if isinstance(path_map, PathIdentifierMap):
        path_map = path_map.snapshot()

    routes: dict[str, str] = {}
    for path, identifier in path_map.items():
        route = path.lstrip("/")
        if route:
            routes.setdefault(route, identifier)
    if not routes:
        raise EmptyManifest("no routes to publish")

    if aliases:
        for route, identifier in list(routes.items()):
            if route.endswith(_INDEX_SUFFIX):
                routes.setdefault(route[: -len(_INDEX_SUFFIX)], identifier)

    default = INDEX_ENTRY if INDEX_ENTRY in routes else min(routes)
    return Manifest(default_entry=default, routes=routes)
