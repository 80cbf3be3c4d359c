"""Breadth-first site crawl producing a :class:`SiteGraph`.

Pages are rendered one at a time in BFS order through an injected
:class:`~backend.scraper.fetcher.RenderBackend`; once the frontier is
exhausted every discovered asset is downloaded once on a bounded thread pool.
A page or asset that cannot be fetched is recorded on the run's
:class:`~backend.errors.RunReport` and left out of the graph; it never stops
the crawl.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit

import httpx

from backend.cancel import CancelToken
from backend.config import Settings, settings
from backend.errors import ErrorPageDetected, FetchFailure, RunReport
from backend.paths.canonical import (
    PAGE_EXTENSIONS,
    Canonicalizer,
    asset_path_for_url,
    normalize_url,
    page_path_for_url,
)
from backend.scraper.extractor import (
    ParsedDocument,
    detect_error_page,
    doc_path_probes,
    parse_document,
)
from backend.scraper.fetcher import RenderBackend, asset_client, fetch_asset, make_renderer
from backend.scraper.mime import classify, guess_mime_type, resolve_mime_type
from backend.scraper.models import Asset, Page, RawPage, SiteGraph

logger = logging.getLogger(__name__)


@dataclass
class ExtractSettings:
    max_pages: int = 100
    max_links_per_page: int = 10
    per_request_delay: float = 1.0
    request_timeout: float = 15.0
    same_domain_only: bool = True
    asset_workers: int = 4
    probe_doc_paths: bool = True

    @classmethod
    def from_settings(cls, cfg: Settings = settings, **overrides) -> "ExtractSettings":
        values = dict(
            max_pages=cfg.max_pages,
            max_links_per_page=cfg.max_links_per_page,
            per_request_delay=cfg.rate_limit_delay,
            request_timeout=cfg.request_timeout,
            same_domain_only=cfg.same_domain_only,
            asset_workers=cfg.asset_workers,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class ExtractResult:
    graph: SiteGraph
    report: RunReport = field(default_factory=RunReport)
    visited: int = 0


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _looks_like_page(url: str) -> bool:
    ext = posixpath.splitext(urlsplit(url).path)[1].lower()
    return not ext or ext in PAGE_EXTENSIONS


class _Crawl:
    """State of one extraction run."""

    def __init__(
        self,
        seed_url: str,
        config: ExtractSettings,
        renderer: RenderBackend,
        cancel: CancelToken,
    ) -> None:
        self.seed = normalize_url(seed_url)
        self.host = (urlsplit(self.seed).hostname or "").lower()
        self.config = config
        self.renderer = renderer
        self.cancel = cancel
        self.canon = Canonicalizer(site_host=self.host)
        self.graph = SiteGraph(seed_url=self.seed, hostname=self.host)
        self.report = RunReport()
        self.queue: deque[str] = deque([self.seed])
        self.visited: set[str] = set()
        self.hashes: dict[str, str] = {}
        # canonical path -> first URL it was discovered at
        self.asset_urls: dict[str, str] = {}

    # -- scope ---------------------------------------------------------------

    def _page_in_scope(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        if host == self.host:
            return True
        return not self.config.same_domain_only and host.endswith("." + self.host)

    def _resolve_site_url(self, doc: ParsedDocument, raw: str) -> Optional[str]:
        """Absolute URL for *raw* if it is a navigable reference, else ``None``."""
        ref = self.canon.parse(raw, doc.base_url)
        try:
            url = doc.resolve(raw)
        except ValueError:
            logger.info("Ignoring malformed link on %s: %r", doc.base_url, raw)
            return None
        if ref.navigable:
            return normalize_url(url)
        if urlsplit(url).scheme in ("http", "https") and self._page_in_scope(url):
            return normalize_url(url)
        return None

    def _discover_asset(self, url: str) -> None:
        if (urlsplit(url).hostname or "").lower() != self.host:
            return
        path = asset_path_for_url(url)
        if path in self.asset_urls:
            return
        self.asset_urls[path] = url
        mime = guess_mime_type(url)
        self.graph.add_asset(
            Asset(url=url, canonical_path=path, kind=classify(mime, url), mime_type=mime)
        )

    # -- pages ---------------------------------------------------------------

    def run_pages(self) -> None:
        probes_queued = not self.config.probe_doc_paths
        while self.queue and len(self.graph.pages) < self.config.max_pages:
            url = self.queue.popleft()
            if url in self.visited:
                continue
            self.cancel.raise_if_cancelled()
            self.visited.add(url)
            self._visit(url)
            if not probes_queued:
                probes_queued = True
                for probe in doc_path_probes(self.seed):
                    probe = normalize_url(probe)
                    if probe not in self.visited:
                        self.queue.append(probe)
            if self.queue:
                self.cancel.sleep(self.config.per_request_delay)

    def _visit(self, url: str) -> None:
        logger.info("Crawling %s", url)
        try:
            raw = self.renderer.navigate(url, self.config.request_timeout)
        except FetchFailure as exc:
            logger.warning("Fetch failed for %s: %s", url, exc.reason)
            self.report.record(exc, target=url)
            return
        if not 200 <= raw.status_code < 300:
            exc = FetchFailure(url, f"HTTP {raw.status_code}", raw.status_code)
            logger.warning("Skipping %s: HTTP %s", url, raw.status_code)
            self.report.record(exc, target=url)
            return
        marker = detect_error_page(raw.html)
        if marker:
            logger.warning("Skipping %s: error page detected", url)
            self.report.record(ErrorPageDetected(url, marker), target=url)
            return

        doc = parse_document(raw)
        self._store(url, raw, doc)

        new_links = 0
        for href in doc.links:
            if new_links >= self.config.max_links_per_page:
                break
            target = self._resolve_site_url(doc, href)
            if target is None or target in self.visited or target in self.queue:
                continue
            if not _looks_like_page(target):
                self._discover_asset(target)
                continue
            self.queue.append(target)
            new_links += 1

        for ref in doc.asset_refs:
            if self.canon.parse(ref, doc.base_url).navigable:
                self._discover_asset(doc.resolve(ref))

    def _store(self, url: str, raw: RawPage, doc: ParsedDocument) -> None:
        content = raw.content
        digest = _content_hash(content)
        if digest in self.hashes:
            logger.info("Duplicate of %s, not stored: %s", self.hashes[digest], url)
            return
        path = page_path_for_url(url)
        if path in self.graph.pages:
            logger.info("%s already stored from another URL form: %s", path, url)
            return
        self.hashes[digest] = path
        self.graph.add_page(
            Page(
                url=url,
                canonical_path=path,
                raw_content=content,
                final_url=raw.final_url or url,
                title=doc.title,
                outbound_links=list(doc.links),
                discovered_asset_refs=list(doc.asset_refs),
            )
        )

    # -- assets --------------------------------------------------------------

    def _fetch_one(self, client: httpx.Client, asset: Asset) -> None:
        self.cancel.raise_if_cancelled()
        raw = fetch_asset(client, asset.url, self.config.request_timeout)
        asset.raw_content = raw.content
        asset.mime_type = resolve_mime_type(raw.content_type, asset.url)
        asset.kind = classify(asset.mime_type, asset.url)
        self.cancel.sleep(self.config.per_request_delay)

    def run_assets(self, client: httpx.Client) -> None:
        pending = [a for a in self.graph.assets.values() if not a.fetched]
        if not pending:
            return
        logger.info("Fetching %d asset(s)", len(pending))
        pool = ThreadPoolExecutor(
            max_workers=max(1, self.config.asset_workers), thread_name_prefix="assets"
        )
        try:
            future_to_asset = {pool.submit(self._fetch_one, client, a): a for a in pending}
            for future in as_completed(future_to_asset):
                asset = future_to_asset[future]
                try:
                    future.result()
                except FetchFailure as exc:
                    logger.warning("Asset fetch failed for %s: %s", asset.url, exc.reason)
                    self.report.record(exc, target=asset.url)
                    del self.graph.assets[asset.canonical_path]
        finally:
            pool.shutdown(wait=True, cancel_futures=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract(
    seed_url: str,
    config: Optional[ExtractSettings] = None,
    *,
    renderer: Optional[RenderBackend] = None,
    client: Optional[httpx.Client] = None,
    cancel: Optional[CancelToken] = None,
) -> ExtractResult:
    """Crawl the site at *seed_url* and return its pages and assets.

    Args:
        seed_url: Absolute URL the breadth-first crawl starts from.
        config: Crawl limits; defaults to values from :data:`settings`.
        renderer: Render backend for pages.  When omitted one is built from
            ``settings.render_mode`` and released before returning; a backend
            passed in stays owned by the caller.
        client: ``httpx`` client for asset downloads.
        cancel: Token checked before each fetch.

    Raises:
        RenderBackendUnavailable: The render backend could not be acquired.
        RunCancelled: *cancel* fired; the partial graph is discarded.
    """
    config = config or ExtractSettings.from_settings()
    cancel = cancel or CancelToken()
    owns_renderer = renderer is None
    renderer = renderer or make_renderer()

    crawl = _Crawl(seed_url, config, renderer, cancel)
    try:
        renderer.acquire()
        crawl.run_pages()
    finally:
        if owns_renderer:
            renderer.release()

    owns_client = client is None
    client = client or asset_client()
    try:
        crawl.run_assets(client)
    finally:
        if owns_client:
            client.close()

    graph = crawl.graph
    logger.info(
        "Extracted %d page(s) and %d asset(s) from %s (%d issue(s))",
        len(graph.pages), len(graph.assets), graph.hostname, len(crawl.report),
    )
    return ExtractResult(graph=graph, report=crawl.report, visited=len(crawl.visited))
