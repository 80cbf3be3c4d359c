"""Error taxonomy and the structured run report.

Recoverable failures (a page that would not load, an upload that kept
failing, an ambiguous path match) are recorded as :class:`Issue` entries on a
:class:`RunReport` and never raised past a component boundary.  Only
:class:`EmptyManifest`, :class:`RenderBackendUnavailable` and
:class:`RunCancelled` propagate to the caller.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional


class PermasiteError(Exception):
    """Base class for every error raised by the backend."""


# ---------------------------------------------------------------------------
# Recoverable
# ---------------------------------------------------------------------------

class FetchFailure(PermasiteError):
    """A page or asset could not be fetched (network error, timeout, 4xx/5xx)."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class ErrorPageDetected(PermasiteError):
    """The crawl target answered with a recognisable error page."""

    def __init__(self, url: str, marker: str) -> None:
        super().__init__(f"{url}: error page ({marker})")
        self.url = url
        self.marker = marker


class UploadFailure(PermasiteError):
    """The storage network rejected a write or it never completed."""


class RetryableUploadError(UploadFailure):
    """Transient upload failure (rate limit, 5xx, transport error)."""


class CanonicalizationAmbiguity(PermasiteError):
    """A reference matched several stored paths with equal specificity."""

    def __init__(self, key: str, candidates: list[str], chosen: str) -> None:
        super().__init__(
            f"{key!r} matches {len(candidates)} stored paths equally; using {chosen!r}"
        )
        self.key = key
        self.candidates = candidates
        self.chosen = chosen


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------

class EmptyManifest(PermasiteError):
    """No routes survived publishing; there is nothing to put in a manifest."""


class RenderBackendUnavailable(PermasiteError):
    """The render backend could not be acquired, or was used after release."""


class RunCancelled(PermasiteError):
    """The caller cancelled the run (explicit abort or deadline)."""


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@dataclass
class Issue:
    kind: str
    target: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.target}: {self.message}"


@dataclass
class RunReport:
    """Accumulates recoverable issues for one extract or publish run.

    ``record`` may be called from worker threads.
    """

    issues: list[Issue] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, error: Exception | str, target: str = "", kind: str | None = None) -> Issue:
        if isinstance(error, Exception):
            issue = Issue(kind=kind or type(error).__name__, target=target, message=str(error))
        else:
            issue = Issue(kind=kind or "Warning", target=target, message=error)
        with self._lock:
            self.issues.append(issue)
        return issue

    def extend(self, other: "RunReport") -> None:
        with self._lock:
            self.issues.extend(other.issues)

    def of_kind(self, kind: str) -> list[Issue]:
        return [i for i in self.issues if i.kind == kind]

    @property
    def failures(self) -> list[Issue]:
        """Issues that caused an item to be dropped (everything but warnings)."""
        return [
            i for i in self.issues
            if i.kind not in ("CanonicalizationAmbiguity", "Warning")
        ]

    @property
    def ok(self) -> bool:
        return not self.failures

    def __len__(self) -> int:
        return len(self.issues)
