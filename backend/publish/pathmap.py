"""The append-only canonical path → storage identifier map."""

from __future__ import annotations

import threading
from typing import Iterator, Optional


class PathIdentifierMap:
    """Thread-safe map built up over the publish passes.

    A later pass may replace the identifier of a path (its bytes changed
    after rewriting) but no entry is ever removed.
    """

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}
        self._revisions: dict[str, int] = {}
        self._lock = threading.Lock()

    def assign(self, path: str, identifier: str) -> Optional[str]:
        """Record *identifier* for *path*; returns the identifier it replaced."""
        with self._lock:
            previous = self._ids.get(path)
            self._ids[path] = identifier
            self._revisions[path] = self._revisions.get(path, 0) + 1
        return previous

    def get(self, path: str) -> Optional[str]:
        with self._lock:
            return self._ids.get(path)

    def revisions(self, path: str) -> int:
        """How many times *path* has been assigned."""
        with self._lock:
            return self._revisions.get(path, 0)

    def snapshot(self) -> dict[str, str]:
        """A point-in-time copy, safe to read while uploads continue."""
        with self._lock:
            return dict(self._ids)

    def paths(self) -> set[str]:
        with self._lock:
            return set(self._ids)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.paths()))
