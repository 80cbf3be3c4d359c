"""Tests for the scraper building blocks: render backends, asset fetch, parsing.

Mocking strategy:
- ``respx`` patches ``httpx`` at the transport layer so no real network calls
  are made.
- Playwright is *not* exercised in the test suite (requires a browser install);
  the browser renderer is only checked for its lifecycle guards, and SPA
  escalation is covered with a scripted fallback backend.
"""

from __future__ import annotations

import httpx
import pytest
import respx

from backend.errors import FetchFailure, RenderBackendUnavailable
from backend.scraper.extractor import detect_error_page, doc_path_probes, parse_document
from backend.scraper.fetcher import (
    BrowserRenderer,
    HttpRenderer,
    _is_spa,
    fetch_asset,
    make_renderer,
)
from backend.scraper.mime import classify, resolve_mime_type
from backend.scraper.models import AssetKind, RawPage
from conftest import FakeRenderer

# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_SIMPLE_HTML = """\
<!DOCTYPE html>
<html>
<head>
  <title>Test Page</title>
  <link rel="stylesheet" href="/css/site.css">
  <link rel="icon" href="/favicon.ico">
  <link rel="canonical" href="https://example.com/">
  <style>@import "/css/print.css"; .hero { background: url('/img/hero.jpg') }</style>
</head>
<body>
  <nav><a href="/docs/">Docs</a></nav>
  <main>
    <p>This is the main content of the test page with enough text.</p>
    <a href="/page1">Link 1</a>
    <a href="https://example.com/page2">Link 2</a>
    <a href="/page1">Link 1 again</a>
    <a href="#fragment">Fragment (excluded)</a>
    <img src="/img/a.png" srcset="/img/a-2x.png 2x, /img/a-3x.png 3x">
    <img data-src="/img/lazy.png">
    <div style="background: url(/img/bg.png)"></div>
  </main>
  <script src="/js/app.js"></script>
</body>
</html>
"""

_SPA_HTML = """\
<!DOCTYPE html>
<html>
<head><title>React App</title></head>
<body>
  <div id="root"></div>
  <script src="/bundle.js"></script>
</body>
</html>
"""


def _raw(html: str, url: str = "https://example.com/") -> RawPage:
    return RawPage(url=url, html=html, status_code=200, final_url=url)


# ---------------------------------------------------------------------------
# _is_spa
# ---------------------------------------------------------------------------

class TestIsSpa:
    def test_detects_react_root_div(self) -> None:
        assert _is_spa(_SPA_HTML) is True

    def test_detects_next_data(self) -> None:
        html = "<html><body><script>window.__NEXT_DATA__ = {}</script></body></html>"
        assert _is_spa(html) is True

    def test_normal_page_not_spa(self) -> None:
        assert _is_spa(_SIMPLE_HTML) is False

    def test_minimal_body_heuristic(self) -> None:
        big_script = "<script>" + "x" * 2500 + "</script>"
        html = f"<html><body>{big_script}<p> </p></body></html>"
        assert _is_spa(html) is True


# ---------------------------------------------------------------------------
# Render backends
# ---------------------------------------------------------------------------

class TestHttpRenderer:
    def test_returns_status_instead_of_raising(self) -> None:
        with respx.mock:
            respx.get("https://example.com/missing").mock(
                return_value=httpx.Response(404, text="Not Found")
            )
            with HttpRenderer() as renderer:
                raw = renderer.navigate("https://example.com/missing", 5)

        assert raw.status_code == 404
        assert raw.html == "Not Found"

    def test_transport_error_is_fetch_failure(self) -> None:
        with respx.mock:
            respx.get("https://example.com/").mock(side_effect=httpx.ConnectError("refused"))
            with HttpRenderer() as renderer:
                with pytest.raises(FetchFailure):
                    renderer.navigate("https://example.com/", 5)

    def test_spa_shell_escalates_to_fallback(self) -> None:
        fallback = FakeRenderer({"https://spa.example.com/": _SIMPLE_HTML})
        with respx.mock:
            respx.get("https://spa.example.com/").mock(
                return_value=httpx.Response(200, text=_SPA_HTML)
            )
            renderer = HttpRenderer(fallback=fallback)
            raw = renderer.navigate("https://spa.example.com/", 5)
            renderer.release()

        assert fallback.calls == ["https://spa.example.com/"]
        assert raw.html == _SIMPLE_HTML
        assert fallback.released is True

    def test_use_after_release_raises(self) -> None:
        renderer = HttpRenderer()
        renderer.release()
        renderer.release()
        with pytest.raises(RenderBackendUnavailable):
            renderer.navigate("https://example.com/", 5)


class TestBrowserRendererLifecycle:
    def test_release_is_idempotent_and_final(self) -> None:
        renderer = BrowserRenderer()
        renderer.release()
        renderer.release()
        with pytest.raises(RenderBackendUnavailable):
            renderer.acquire()
        with pytest.raises(RenderBackendUnavailable):
            renderer.navigate("https://example.com/", 5)

    def test_crashed_browser_is_unavailable(self) -> None:
        from playwright.sync_api import Error as PlaywrightError

        class CrashedBrowser:
            def new_context(self, **kwargs):
                raise PlaywrightError("Target page, context or browser has been closed")

            def close(self) -> None:
                pass

        renderer = BrowserRenderer()
        renderer._browser = CrashedBrowser()
        with pytest.raises(RenderBackendUnavailable, match="no longer usable"):
            renderer.navigate("https://example.com/", 5)
        renderer.release()


def test_make_renderer_modes() -> None:
    assert isinstance(make_renderer("browser"), BrowserRenderer)
    http = make_renderer("http")
    assert isinstance(http, HttpRenderer) and isinstance(http.fallback, BrowserRenderer)
    assert make_renderer("static").fallback is None
    with pytest.raises(ValueError):
        make_renderer("telepathy")


# ---------------------------------------------------------------------------
# Asset fetch / MIME
# ---------------------------------------------------------------------------

class TestFetchAsset:
    def test_returns_bytes_and_declared_type(self) -> None:
        with respx.mock:
            respx.get("https://example.com/img/a.png").mock(
                return_value=httpx.Response(
                    200, content=b"\x89PNG", headers={"content-type": "image/png"}
                )
            )
            with httpx.Client() as client:
                raw = fetch_asset(client, "https://example.com/img/a.png", 5)

        assert raw.content == b"\x89PNG"
        assert raw.content_type == "image/png"

    def test_non_200_raises(self) -> None:
        with respx.mock:
            respx.get("https://example.com/gone.css").mock(return_value=httpx.Response(410))
            with httpx.Client() as client:
                with pytest.raises(FetchFailure) as info:
                    fetch_asset(client, "https://example.com/gone.css", 5)

        assert info.value.status_code == 410


class TestMime:
    def test_declared_type_wins_without_parameters(self) -> None:
        assert resolve_mime_type("text/css; charset=utf-8", "/x.bin") == "text/css"

    def test_falls_back_to_extension(self) -> None:
        assert resolve_mime_type(None, "https://example.com/f.woff2") == "font/woff2"
        assert resolve_mime_type("application/octet-stream", "/a.svg") == "image/svg+xml"

    def test_classify(self) -> None:
        assert classify("text/css") is AssetKind.STYLESHEET
        assert classify("application/octet-stream", "/x.css") is AssetKind.STYLESHEET
        assert classify("application/javascript") is AssetKind.SCRIPT
        assert classify("image/webp") is AssetKind.IMAGE
        assert classify("application/font-woff", "/f.woff") is AssetKind.FONT
        assert classify("application/pdf") is AssetKind.OTHER


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------

class TestParseDocument:
    def test_title(self) -> None:
        assert parse_document(_raw(_SIMPLE_HTML)).title == "Test Page"
        assert parse_document(_raw("<html><body></body></html>")).title == ""

    def test_links_are_deduplicated_and_skip_fragments(self) -> None:
        doc = parse_document(_raw(_SIMPLE_HTML))
        assert doc.links == ["/docs/", "/page1", "https://example.com/page2"]

    def test_asset_references(self) -> None:
        doc = parse_document(_raw(_SIMPLE_HTML))
        assert set(doc.asset_refs) == {
            "/css/site.css",
            "/favicon.ico",
            "/css/print.css",
            "/img/hero.jpg",
            "/img/a.png",
            "/img/a-2x.png",
            "/img/a-3x.png",
            "/img/lazy.png",
            "/img/bg.png",
            "/js/app.js",
        }

    def test_base_href_changes_resolution(self) -> None:
        html = '<html><head><base href="/v2/"></head><body><a href="intro">x</a></body></html>'
        doc = parse_document(_raw(html, "https://example.com/start"))
        assert doc.base_url == "https://example.com/v2/"
        assert doc.resolve("intro") == "https://example.com/v2/intro"

    def test_relative_links_resolve_against_final_url(self) -> None:
        raw = RawPage(
            url="https://example.com/old",
            html='<a href="next">n</a>',
            status_code=200,
            final_url="https://example.com/new/",
        )
        assert parse_document(raw).resolve("next") == "https://example.com/new/next"

    def test_malformed_base_href_is_ignored(self) -> None:
        html = '<html><head><base href="http://[oops/"></head><body><a href="a">x</a></body></html>'
        doc = parse_document(_raw(html, "https://example.com/docs/"))
        assert doc.base_url == "https://example.com/docs/"
        assert doc.links == ["a"]


class TestErrorPages:
    @pytest.mark.parametrize(
        "html",
        [
            '<h1 id="_top" data-page-title="" class="astro-jbfsktt5">404</h1>',
            "<p>Page not found</p>",
            "<Error><Code>AccessDenied</Code><Message>Access Denied</Message></Error>",
        ],
    )
    def test_markers_detected(self, html: str) -> None:
        assert detect_error_page(html) is not None

    def test_regular_page_is_not_an_error(self) -> None:
        assert detect_error_page(_SIMPLE_HTML) is None


def test_doc_path_probes_stay_on_seed_host() -> None:
    probes = doc_path_probes("https://example.com/some/page")
    assert "https://example.com/quickstart" in probes
    assert "https://example.com/glossary.html" in probes
    assert all(p.startswith("https://example.com/") for p in probes)
