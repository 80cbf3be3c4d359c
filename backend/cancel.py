"""Caller-driven cancellation shared by the extractor and the publisher."""

from __future__ import annotations

import threading
import time
from typing import Optional

from backend.errors import RunCancelled


class CancelToken:
    """A cancellation flag with an optional deadline.

    Workers call :meth:`raise_if_cancelled` before each fetch or upload and
    use :meth:`sleep` for politeness and backoff delays so that a cancel
    interrupts the wait instead of running it out.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelled("run cancelled")

    def sleep(self, seconds: float) -> None:
        """Wait up to *seconds*; raise :class:`RunCancelled` if cancelled meanwhile."""
        if seconds > 0:
            if self._deadline is not None:
                seconds = min(seconds, max(0.0, self._deadline - time.monotonic()))
            self._event.wait(seconds)
        self.raise_if_cancelled()
