"""Shared fixtures: an in-memory database and a scripted render backend."""

from __future__ import annotations

from typing import Optional, Union

import pytest

from backend.db.connection import get_connection
from backend.db.migrations import init_db
from backend.errors import FetchFailure
from backend.paths.canonical import normalize_url
from backend.scraper.fetcher import RenderBackend
from backend.scraper.models import RawPage

PageScript = Union[str, tuple[int, str], Exception]


class FakeRenderer(RenderBackend):
    """Serves canned documents keyed by URL; anything else is a 404.

    *redirects* maps a requested URL to the URL actually served, which is
    reported back as the page's ``final_url``.
    """

    def __init__(
        self,
        pages: dict[str, PageScript],
        redirects: Optional[dict[str, str]] = None,
    ) -> None:
        self.pages = {normalize_url(url): entry for url, entry in pages.items()}
        self.redirects = {
            normalize_url(src): normalize_url(dst) for src, dst in (redirects or {}).items()
        }
        self.calls: list[str] = []
        self.acquired = False
        self.released = False

    def acquire(self) -> None:
        self.acquired = True

    def release(self) -> None:
        self.released = True

    def navigate(self, url: str, timeout: float) -> RawPage:
        self.calls.append(url)
        final_url = self.redirects.get(normalize_url(url), url)
        entry = self.pages.get(normalize_url(final_url), (404, "<h1>Not here</h1>"))
        if isinstance(entry, Exception):
            raise FetchFailure(url, str(entry))
        status, html = entry if isinstance(entry, tuple) else (200, entry)
        return RawPage(url=url, html=html, status_code=status, final_url=final_url)


@pytest.fixture()
def conn():
    """Isolated in-memory database with the schema applied."""
    connection = get_connection(db_path=":memory:")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def workspace(tmp_path, monkeypatch):
    """Point the on-disk workspace (and its database) at a temp directory."""
    monkeypatch.setattr("backend.config.settings.workspace_dir", tmp_path)
    monkeypatch.setattr("backend.config.settings.rate_limit_delay", 0.0)
    return tmp_path
