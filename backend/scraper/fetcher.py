"""Render backends for pages and the plain HTTP fetch used for assets.

A render backend is an explicitly owned resource handle: callers ``acquire()``
it (or use it as a context manager), call ``navigate()`` any number of times,
and ``release()`` it exactly once.  Nothing here is a module-level singleton,
so tests can pass in a fake backend and concurrent runs never share a browser.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from backend.config import settings
from backend.errors import FetchFailure, RenderBackendUnavailable
from backend.scraper.models import RawAsset, RawPage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SPA / JS-rendered page detection heuristics
# ---------------------------------------------------------------------------
_SPA_PATTERNS = [
    re.compile(r'<div[^>]+id=["\'](?:root|app|__next|__nuxt)["\'][^>]*>\s*</div>', re.IGNORECASE),
    re.compile(r"window\.__NEXT_DATA__", re.IGNORECASE),
    re.compile(r"ng-version=", re.IGNORECASE),
    re.compile(r"data-reactroot", re.IGNORECASE),
    re.compile(r"data-sveltekit-preload-data", re.IGNORECASE),
]


def _default_headers() -> dict[str, str]:
    return {"User-Agent": settings.user_agent, "Accept": "*/*"}


def _is_spa(html: str) -> bool:
    """Return ``True`` if *html* looks like a JavaScript shell that needs rendering."""
    for pattern in _SPA_PATTERNS:
        if pattern.search(html):
            return True
    # Very little visible text relative to total HTML size.
    no_scripts = re.sub(
        r"<(script|style)[^>]*>.*?</(script|style)>", "", html, flags=re.IGNORECASE | re.DOTALL
    )
    stripped = re.sub(r"<[^>]+>", "", no_scripts).strip()
    return len(html) > 2000 and len(stripped) < 200


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class RenderBackend(ABC):
    """Turns a URL into a post-load document snapshot."""

    def acquire(self) -> None:
        """Prepare the backend; idempotent."""

    def release(self) -> None:
        """Free every resource held by the backend; idempotent."""

    @abstractmethod
    def navigate(self, url: str, timeout: float) -> RawPage:
        """Return the rendered document.  Non-2xx statuses are returned, not
        raised; transport errors raise :class:`~backend.errors.FetchFailure`."""

    def __enter__(self) -> "RenderBackend":
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class BrowserRenderer(RenderBackend):
    """Headless Chromium through Playwright.

    The browser is launched lazily on first use and shared by every
    navigation; each navigation gets its own short-lived browser context that
    is closed on success and failure alike.  Playwright's sync API is bound to
    the thread that started it, so one instance must be driven from a single
    thread.
    """

    def __init__(self, headless: bool = True, user_agent: Optional[str] = None) -> None:
        self.headless = headless
        self.user_agent = user_agent or settings.user_agent
        self._playwright: Any = None
        self._browser: Any = None
        self._released = False
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            if self._released:
                raise RenderBackendUnavailable("browser renderer used after release")
            if self._browser is not None:
                return
            # Imported lazily so the HTTP-only paths don't need a browser install.
            from playwright.sync_api import sync_playwright  # noqa: PLC0415

            try:
                self._playwright = sync_playwright().start()
                self._browser = self._playwright.chromium.launch(headless=self.headless)
            except Exception as exc:
                if self._playwright is not None:
                    self._playwright.stop()
                    self._playwright = None
                raise RenderBackendUnavailable(f"could not launch browser: {exc}") from exc
            logger.info("Launched headless browser")

    def navigate(self, url: str, timeout: float) -> RawPage:
        self.acquire()
        from playwright.sync_api import Error as PlaywrightError  # noqa: PLC0415

        try:
            context = self._browser.new_context(user_agent=self.user_agent)
        except PlaywrightError as exc:
            raise RenderBackendUnavailable(f"browser is no longer usable: {exc}") from exc
        try:
            page = context.new_page()
            response = page.goto(url, wait_until="networkidle", timeout=int(timeout * 1000))
            html = page.content()
            status = response.status if response is not None else 0
            return RawPage(url=url, html=html, status_code=status, final_url=page.url)
        except PlaywrightError as exc:
            raise FetchFailure(url, str(exc)) from exc
        finally:
            context.close()

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            browser, pw = self._browser, self._playwright
            self._browser = self._playwright = None
        try:
            if browser is not None:
                browser.close()
        finally:
            if pw is not None:
                pw.stop()
                logger.info("Closed headless browser")


class HttpRenderer(RenderBackend):
    """Plain ``httpx`` fetch, escalating to *fallback* for SPA shells."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        fallback: Optional[RenderBackend] = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.fallback = fallback
        self._released = False

    @property
    def client(self) -> httpx.Client:
        if self._released:
            raise RenderBackendUnavailable("HTTP renderer used after release")
        if self._client is None:
            self._client = httpx.Client(headers=_default_headers(), follow_redirects=True)
        return self._client

    def navigate(self, url: str, timeout: float) -> RawPage:
        try:
            response = self.client.get(url, timeout=timeout)
        except httpx.HTTPError as exc:
            raise FetchFailure(url, str(exc)) from exc

        raw = RawPage(
            url=url,
            html=response.text,
            status_code=response.status_code,
            final_url=str(response.url),
        )
        if raw.status_code < 400 and self.fallback is not None and _is_spa(raw.html):
            logger.info("SPA shell detected at %s; rendering in browser", url)
            raw = self.fallback.navigate(url, timeout)
        return raw

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if self._owns_client and self._client is not None:
                self._client.close()
        finally:
            if self.fallback is not None:
                self.fallback.release()


def make_renderer(mode: Optional[str] = None) -> RenderBackend:
    """Build the render backend named by *mode* (defaults to ``settings.render_mode``).

    ``browser`` renders every page; ``http`` fetches statically and renders
    only SPA shells; ``static`` never starts a browser.
    """
    mode = mode or settings.render_mode
    if mode == "browser":
        return BrowserRenderer()
    if mode == "http":
        return HttpRenderer(fallback=BrowserRenderer())
    if mode == "static":
        return HttpRenderer()
    raise ValueError(f"Unknown render mode {mode!r}. Use: browser | http | static")


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

def fetch_asset(client: httpx.Client, url: str, timeout: float) -> RawAsset:
    """Download *url* and return its bytes.

    Raises:
        FetchFailure: On transport errors or any non-200 status.
    """
    try:
        response = client.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        raise FetchFailure(url, str(exc)) from exc
    if response.status_code != 200:
        raise FetchFailure(url, f"HTTP {response.status_code}", response.status_code)
    return RawAsset(
        url=url,
        content=response.content,
        status_code=response.status_code,
        content_type=response.headers.get("content-type", ""),
    )


def asset_client() -> httpx.Client:
    return httpx.Client(headers=_default_headers(), follow_redirects=True)
