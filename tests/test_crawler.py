"""Tests for the breadth-first extractor (backend.scraper.crawler).

Pages come from a scripted ``FakeRenderer``; asset downloads are mocked with
``respx``.  Every crawl uses a zero politeness delay and skips the
documentation-path probes unless a test is about them.
"""

from __future__ import annotations

import httpx
import pytest
import respx

from backend.cancel import CancelToken
from backend.errors import RunCancelled
from backend.scraper import ExtractSettings, extract
from backend.scraper.models import AssetKind
from conftest import FakeRenderer

SEED = "https://example.com/"


def _config(**overrides) -> ExtractSettings:
    values = dict(per_request_delay=0.0, probe_doc_paths=False, asset_workers=2)
    values.update(overrides)
    return ExtractSettings(**values)


def _page(body: str, title: str = "Page") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

class TestPages:
    def test_directory_and_bare_forms_share_one_page(self) -> None:
        about = _page("<p>About us</p>", "About")
        renderer = FakeRenderer(
            {
                SEED: _page('<a href="/about">A</a> <a href="/about/">B</a>', "Home"),
                "https://example.com/about": about,
                "https://example.com/about/": about,
            }
        )
        result = extract(SEED, _config(), renderer=renderer)

        assert set(result.graph.pages) == {"/index.html", "/about/index.html"}
        assert "https://example.com/about" in renderer.calls
        assert "https://example.com/about/" in renderer.calls
        assert result.graph.pages["/about/index.html"].title == "About"
        assert result.report.ok

    def test_failed_pages_are_recorded_and_excluded(self) -> None:
        renderer = FakeRenderer(
            {
                SEED: _page(
                    '<a href="/gone">x</a> <a href="/soft404">y</a> <a href="/down">z</a>'
                ),
                "https://example.com/soft404": _page("<p>Page not found</p>"),
                "https://example.com/down": ConnectionError("reset by peer"),
            }
        )
        result = extract(SEED, _config(), renderer=renderer)

        assert list(result.graph.pages) == ["/index.html"]
        assert [i.target for i in result.report.of_kind("FetchFailure")] == [
            "https://example.com/gone",
            "https://example.com/down",
        ]
        assert len(result.report.of_kind("ErrorPageDetected")) == 1
        assert not result.report.ok

    def test_identical_content_is_stored_once(self) -> None:
        same = _page("<p>Mirror</p>")
        renderer = FakeRenderer(
            {
                SEED: _page('<a href="/one">1</a> <a href="/two">2</a>'),
                "https://example.com/one": same,
                "https://example.com/two": same,
            }
        )
        result = extract(SEED, _config(), renderer=renderer)

        assert set(result.graph.pages) == {"/index.html", "/one/index.html"}
        assert result.visited == 3

    def test_stops_at_max_pages(self) -> None:
        links = "".join(f'<a href="/p{i}">{i}</a>' for i in range(5))
        pages = {SEED: _page(links)}
        pages.update({f"https://example.com/p{i}": _page(f"<p>{i}</p>") for i in range(5)})
        result = extract(SEED, _config(max_pages=3), renderer=FakeRenderer(pages))

        assert len(result.graph.pages) == 3
        assert set(result.graph.pages) == {"/index.html", "/p0/index.html", "/p1/index.html"}

    def test_caps_links_followed_per_page(self) -> None:
        links = "".join(f'<a href="/p{i}">{i}</a>' for i in range(5))
        pages = {SEED: _page(links)}
        pages.update({f"https://example.com/p{i}": _page(f"<p>{i}</p>") for i in range(5)})
        renderer = FakeRenderer(pages)
        result = extract(SEED, _config(max_links_per_page=2), renderer=renderer)

        assert len(result.graph.pages) == 3
        assert "https://example.com/p2" not in renderer.calls

    def test_other_hosts_are_not_crawled(self) -> None:
        renderer = FakeRenderer(
            {
                SEED: _page(
                    '<a href="https://other.org/">o</a>'
                    '<a href="https://docs.example.com/">d</a>'
                    '<a href="mailto:hi@example.com">m</a>'
                ),
            }
        )
        extract(SEED, _config(), renderer=renderer)
        assert renderer.calls == [SEED]

    def test_subdomains_followed_when_not_same_domain_only(self) -> None:
        renderer = FakeRenderer(
            {
                SEED: _page('<a href="https://docs.example.com/">d</a>'),
                "https://docs.example.com/": _page("<p>docs</p>"),
            }
        )
        extract(SEED, _config(same_domain_only=False), renderer=renderer)
        assert "https://docs.example.com/" in renderer.calls

    def test_doc_paths_probed_after_the_seed(self) -> None:
        renderer = FakeRenderer({SEED: _page("<p>Home</p>")})
        result = extract(SEED, _config(probe_doc_paths=True), renderer=renderer)

        assert renderer.calls[0] == SEED
        assert "https://example.com/quickstart" in renderer.calls
        assert "https://example.com/glossary.html" in renderer.calls
        assert list(result.graph.pages) == ["/index.html"]

    def test_captured_bytes_are_the_rendered_document(self) -> None:
        html = _page('<a href="/x">x</a>')
        result = extract(SEED, _config(max_pages=1), renderer=FakeRenderer({SEED: html}))
        page = result.graph.pages["/index.html"]
        assert page.raw_content == html.encode("utf-8")
        assert page.outbound_links == ["/x"]

    def test_malformed_links_do_not_stop_the_crawl(self) -> None:
        renderer = FakeRenderer(
            {
                SEED: _page(
                    '<a href="http://[oops/">bad</a>'
                    '<a href="https://example.com:99999/">port</a>'
                    '<img src="//[broken.png">'
                    '<a href="/about">About</a>',
                    "Home",
                ),
                "https://example.com/about": _page("<p>About us</p>", "About"),
            }
        )
        result = extract(SEED, _config(), renderer=renderer)

        assert set(result.graph.pages) == {"/index.html", "/about/index.html"}
        assert result.graph.assets == {}
        assert [i.target for i in result.report.of_kind("FetchFailure")] == [
            "https://example.com:99999/"
        ]

    def test_relative_links_follow_the_redirected_url(self) -> None:
        renderer = FakeRenderer(
            {
                SEED: _page('<a href="/docs">Docs</a>', "Home"),
                "https://example.com/docs/": _page('<a href="intro">Intro</a>', "Docs"),
                "https://example.com/docs/intro": _page("<p>Start here</p>", "Intro"),
            },
            redirects={"https://example.com/docs": "https://example.com/docs/"},
        )
        result = extract(SEED, _config(), renderer=renderer)

        assert set(result.graph.pages) == {
            "/index.html", "/docs/index.html", "/docs/intro/index.html"
        }
        docs = result.graph.pages["/docs/index.html"]
        assert docs.url == "https://example.com/docs"
        assert docs.base_url == "https://example.com/docs/"
        assert result.report.ok


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

class TestAssets:
    def test_assets_fetched_once_and_failures_dropped(self) -> None:
        home = _page(
            '<link rel="stylesheet" href="/css/missing.css">'
            '<img src="/img/a.png?v=1"> <img src="/img/a.png?v=2">'
            '<img src="https://cdn.other.org/x.png">'
            '<a href="/files/guide.pdf">guide</a>'
        )
        with respx.mock:
            png = respx.get("https://example.com/img/a.png").mock(
                return_value=httpx.Response(
                    200, content=b"\x89PNG", headers={"content-type": "image/png"}
                )
            )
            respx.get("https://example.com/css/missing.css").mock(
                return_value=httpx.Response(404)
            )
            respx.get("https://example.com/files/guide.pdf").mock(
                return_value=httpx.Response(200, content=b"%PDF")
            )
            with httpx.Client() as client:
                result = extract(
                    SEED, _config(), renderer=FakeRenderer({SEED: home}), client=client
                )

        assets = result.graph.assets
        assert set(assets) == {"/img/a.png", "/files/guide.pdf"}
        assert png.call_count == 1
        assert assets["/img/a.png"].kind is AssetKind.IMAGE
        assert assets["/img/a.png"].mime_type == "image/png"
        assert assets["/files/guide.pdf"].mime_type == "application/pdf"
        failed = result.report.of_kind("FetchFailure")
        assert [i.target for i in failed] == ["https://example.com/css/missing.css"]

    def test_no_asset_requests_when_nothing_discovered(self) -> None:
        with respx.mock:
            result = extract(SEED, _config(), renderer=FakeRenderer({SEED: _page("hi")}))
        assert result.graph.assets == {}


# ---------------------------------------------------------------------------
# Renderer ownership / cancellation
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_caller_owned_renderer_is_not_released(self) -> None:
        renderer = FakeRenderer({SEED: _page("hi")})
        extract(SEED, _config(), renderer=renderer)
        assert renderer.acquired is True
        assert renderer.released is False

    def test_built_renderer_is_released(self, monkeypatch) -> None:
        renderer = FakeRenderer({SEED: _page("hi")})
        monkeypatch.setattr("backend.scraper.crawler.make_renderer", lambda *a, **k: renderer)
        extract(SEED, _config())
        assert renderer.released is True

    def test_cancelled_run_raises_and_releases(self, monkeypatch) -> None:
        renderer = FakeRenderer({SEED: _page("hi")})
        monkeypatch.setattr("backend.scraper.crawler.make_renderer", lambda *a, **k: renderer)
        token = CancelToken()
        token.cancel()

        with pytest.raises(RunCancelled):
            extract(SEED, _config(), cancel=token)
        assert renderer.calls == []
        assert renderer.released is True


def test_settings_overrides_ignore_none() -> None:
    config = ExtractSettings.from_settings(max_pages=None, per_request_delay=0.25)
    assert config.max_pages > 0
    assert config.per_request_delay == 0.25
