"""Lookup from canonical keys to stored paths."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional

from backend.errors import CanonicalizationAmbiguity, RunReport
from backend.paths.canonical import Reference, weighted_variants

logger = logging.getLogger(__name__)


class PathIndex:
    """Resolve canonical keys against a set of stored paths.

    Every stored path is registered under all of its :func:`variants`.  When a
    key matches several stored paths the exact (zero-transformation) match
    wins, then the one needing the fewest transformations, then the longer
    stored path.  Anything still tied is reported as a
    :class:`~backend.errors.CanonicalizationAmbiguity` and settled by
    lexicographic order.
    """

    def __init__(self, stored_paths: Iterable[str], report: Optional[RunReport] = None) -> None:
        self._by_key: dict[str, list[tuple[int, str]]] = defaultdict(list)
        self._report = report
        self._warned: set[str] = set()
        for stored in dict.fromkeys(stored_paths):
            for key, cost in weighted_variants(stored).items():
                self._by_key[key].append((cost, stored))

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def candidates(self, key: str) -> list[str]:
        return [stored for _, stored in self._ranked(key)]

    def _ranked(self, key: str) -> list[tuple[int, str]]:
        return sorted(self._by_key.get(key, ()), key=lambda c: (c[0], -len(c[1]), c[1]))

    def match(self, key: str) -> Optional[str]:
        """Return the stored path *key* refers to, or ``None``."""
        ranked = self._ranked(key)
        if not ranked:
            return None
        best_cost, best = ranked[0]
        tied = [s for cost, s in ranked if cost == best_cost and len(s) == len(best)]
        if len(tied) > 1 and key not in self._warned:
            self._warned.add(key)
            ambiguity = CanonicalizationAmbiguity(key, tied, best)
            logger.warning("%s", ambiguity)
            if self._report is not None:
                self._report.record(ambiguity, target=key)
        return best

    def resolve(self, reference: Reference) -> Optional[str]:
        if not reference.navigable or reference.key is None:
            return None
        return self.match(reference.key)
