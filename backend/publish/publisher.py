"""Three-pass upload of a site graph to the storage network.

Storage identifiers only exist once an object's bytes are final, yet pages
and stylesheets must embed the identifiers of what they reference.  The
publisher breaks that cycle by uploading in dependency order:

1. **Leaf assets.**  Everything except stylesheets is uploaded as-is.
2. **Stylesheets.**  ``@import`` and ``url()`` references are rewritten
   against the map, then uploaded.  Sheets that import other sheets go in
   later waves so the imported sheet already has an identifier.
3. **Pages.**  Uploaded over ``page_rounds`` rounds.  Round 1 rewrites asset
   references only, which yields a provisional identifier per page.  Every
   further round rewrites the *original* page bytes against the identifiers
   the previous round produced, so cross-page links point one round behind.
   Rounds end early once a round changes no identifier.

Within a pass uploads run concurrently; passes never overlap.  An item whose
upload keeps failing is recorded on the report and left out of the map; a
page that already holds an identifier from an earlier round keeps it.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, TypeVar
from urllib.parse import urlsplit

from backend.cancel import CancelToken
from backend.config import Settings, settings
from backend.errors import RetryableUploadError, RunReport, UploadFailure
from backend.paths.canonical import DEFAULT_STORAGE_HOSTS, Canonicalizer
from backend.paths.index import PathIndex
from backend.publish.pathmap import PathIdentifierMap
from backend.publish.rewriter import Rewriter
from backend.publish.storage import StorageClient
from backend.scraper.models import Asset, AssetKind, Page, SiteGraph

logger = logging.getLogger(__name__)

T = TypeVar("T")
MIN_PAGE_ROUNDS = 2


@dataclass
class PublishOptions:
    concurrency: int = 4
    max_retries: int = 3
    backoff: float = 1.0
    page_rounds: int = MIN_PAGE_ROUNDS
    app_name: str = "Permasite"
    app_version: str = "1.0.0"

    @classmethod
    def from_settings(cls, cfg: Settings = settings, **overrides) -> "PublishOptions":
        values = dict(
            concurrency=cfg.upload_concurrency,
            max_retries=cfg.upload_max_retries,
            backoff=cfg.upload_backoff,
            page_rounds=cfg.page_rounds,
            app_name=cfg.app_name,
            app_version=cfg.app_version,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class PublishResult:
    path_map: PathIdentifierMap
    report: RunReport = field(default_factory=RunReport)
    page_rounds: int = 0
    uploads: int = 0

    @property
    def identifiers(self) -> dict[str, str]:
        return self.path_map.snapshot()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _decode(content: Optional[bytes]) -> str:
    return (content or b"").decode("utf-8", errors="replace")


def stylesheet_waves(deps: dict[str, set[str]]) -> tuple[list[list[str]], list[str]]:
    """Order stylesheets so every sheet follows the sheets it references.

    Args:
        deps: Stylesheet path → stylesheet paths it references.

    Returns:
        ``(waves, cyclic)``: each wave only depends on earlier waves;
        ``cyclic`` holds the sheets caught in (or behind) an import cycle.
    """
    remaining = {path: set(d) & set(deps) - {path} for path, d in deps.items()}
    waves: list[list[str]] = []
    while remaining:
        ready = sorted(p for p, d in remaining.items() if not d)
        if not ready:
            break
        waves.append(ready)
        for path in ready:
            del remaining[path]
        for d in remaining.values():
            d.difference_update(ready)
    return waves, sorted(remaining)


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class Publisher:
    """Publishes one :class:`SiteGraph` through a :class:`StorageClient`."""

    def __init__(
        self,
        storage: StorageClient,
        options: Optional[PublishOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.storage = storage
        self.options = options or PublishOptions.from_settings()
        self.cancel = cancel or CancelToken()

    # -- uploads -------------------------------------------------------------

    def _tags(self, content_type: str, path: str, url: str, **extra: str) -> dict[str, str]:
        tags = {
            "Content-Type": content_type,
            "Path": path,
            "App-Name": self.options.app_name,
            "App-Version": self.options.app_version,
        }
        if url:
            tags["Original-URL"] = url
        tags.update({k.replace("_", "-"): v for k, v in extra.items() if v})
        return tags

    def upload(self, data: bytes, content_type: str, tags: dict[str, str]) -> str:
        """Put *data*, retrying transient failures with exponential backoff.

        Raises:
            UploadFailure: Rejected outright, or still failing after
                ``max_retries`` retries.
            RunCancelled: Cancelled before or between attempts.
        """
        attempt = 0
        while True:
            self.cancel.raise_if_cancelled()
            try:
                return self.storage.put(data, content_type, tags)
            except RetryableUploadError as exc:
                if attempt >= self.options.max_retries:
                    raise UploadFailure(
                        f"giving up after {attempt + 1} attempt(s): {exc}"
                    ) from exc
                delay = self.options.backoff * (2 ** attempt)
                logger.warning(
                    "Upload of %s failed (%s); retrying in %.1fs",
                    tags.get("Path", "?"), exc, delay,
                )
                attempt += 1
                self.cancel.sleep(delay)

    def _run_pass(
        self,
        items: Iterable[T],
        work: Callable[[T], str],
        label: Callable[[T], str],
        report: RunReport,
    ) -> dict[str, str]:
        """Run *work* over *items* concurrently; returns ``{label: identifier}``
        for the items that succeeded."""
        items = list(items)
        results: dict[str, str] = {}
        if not items:
            return results
        pool = ThreadPoolExecutor(
            max_workers=max(1, min(self.options.concurrency, len(items))),
            thread_name_prefix="upload",
        )
        try:
            future_to_item = {pool.submit(work, item): item for item in items}
            for future in as_completed(future_to_item):
                name = label(future_to_item[future])
                try:
                    results[name] = future.result()
                except UploadFailure as exc:
                    logger.error("Upload failed for %s: %s", name, exc)
                    report.record(exc, target=name)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)
        return results

    # -- passes --------------------------------------------------------------

    def _upload_asset(self, asset: Asset, body: bytes) -> str:
        tags = self._tags(asset.mime_type, asset.canonical_path, asset.url)
        return self.upload(body, asset.mime_type, tags)

    def _pass_leaf_assets(self, assets: list[Asset], path_map: PathIdentifierMap, report: RunReport) -> int:
        results = self._run_pass(
            assets,
            lambda a: self._upload_asset(a, a.raw_content or b""),
            lambda a: a.canonical_path,
            report,
        )
        for path, identifier in results.items():
            path_map.assign(path, identifier)
        logger.info("Pass 1: %d/%d leaf asset(s) uploaded", len(results), len(assets))
        return len(results)

    def _pass_stylesheets(
        self,
        sheets: list[Asset],
        path_map: PathIdentifierMap,
        make_rewriter: Callable[[dict[str, str]], Rewriter],
        report: RunReport,
    ) -> int:
        by_path = {s.canonical_path: s for s in sheets}
        scanner = make_rewriter({})
        deps = {
            s.canonical_path: scanner.css_dependencies(_decode(s.raw_content), s.url or s.canonical_path)
            for s in sheets
        }
        waves, cyclic = stylesheet_waves(deps)
        if cyclic:
            message = "stylesheet import cycle; references between these sheets stay unrewritten"
            logger.warning("%s: %s", message, ", ".join(cyclic))
            for path in cyclic:
                report.record(message, target=path)
            waves.append(cyclic)

        uploaded = 0
        for wave in waves:
            rewriter = make_rewriter(path_map.snapshot())

            def work(sheet: Asset) -> str:
                css = rewriter.rewrite_css(_decode(sheet.raw_content), sheet.url or sheet.canonical_path)
                return self._upload_asset(sheet, css.encode("utf-8"))

            results = self._run_pass(
                [by_path[p] for p in wave], work, lambda a: a.canonical_path, report
            )
            for path, identifier in results.items():
                path_map.assign(path, identifier)
            uploaded += len(results)
        logger.info("Pass 2: %d/%d stylesheet(s) uploaded", uploaded, len(sheets))
        return uploaded

    def _pass_pages(
        self,
        pages: list[Page],
        path_map: PathIdentifierMap,
        make_rewriter: Callable[[dict[str, str]], Rewriter],
        report: RunReport,
    ) -> tuple[int, int]:
        page_paths = {p.canonical_path for p in pages}
        rounds = max(MIN_PAGE_ROUNDS, self.options.page_rounds)
        last_body: dict[str, bytes] = {}
        uploaded = 0
        completed = 0

        for round_no in range(1, rounds + 1):
            current = path_map.snapshot()
            if round_no == 1:
                # Provisional round: page links untouched.
                current = {p: i for p, i in current.items() if p not in page_paths}
            rewriter = make_rewriter(current)
            bodies = {
                p.canonical_path: rewriter.rewrite_html(p.html, p.base_url or p.canonical_path).encode("utf-8")
                for p in pages
            }
            # Bytes identical to the previous round would only re-store the same object.
            todo = [
                p for p in pages
                if last_body.get(p.canonical_path) != bodies[p.canonical_path]
                or p.canonical_path not in path_map
            ]

            def work(page: Page, round_no: int = round_no) -> str:
                tags = self._tags(
                    "text/html",
                    page.canonical_path,
                    page.url,
                    Page_Title=page.title,
                    Publish_Round=str(round_no),
                )
                return self.upload(bodies[page.canonical_path], "text/html", tags)

            results = self._run_pass(todo, work, lambda p: p.canonical_path, report)
            changed = 0
            for path, identifier in results.items():
                last_body[path] = bodies[path]
                if path_map.assign(path, identifier) != identifier:
                    changed += 1
            uploaded += len(results)
            completed = round_no
            logger.info(
                "Pass 3, round %d: %d page(s) uploaded, %d identifier(s) changed",
                round_no, len(results), changed,
            )
            if round_no >= MIN_PAGE_ROUNDS and changed == 0:
                break
        return uploaded, completed

    # -- entry point ---------------------------------------------------------

    def publish(self, graph: SiteGraph) -> PublishResult:
        """Upload *graph* and return the resulting path → identifier map.

        Raises:
            RunCancelled: The cancel token fired; the partial map is discarded.
        """
        report = RunReport()
        path_map = PathIdentifierMap()
        gateway_host = (urlsplit(self.storage.gateway_url).hostname or "").lower()
        canon = Canonicalizer(
            site_host=graph.hostname,
            storage_hosts=DEFAULT_STORAGE_HOSTS | ({gateway_host} if gateway_host else set()),
        )

        assets = [a for a in graph.assets.values() if a.fetched]
        for asset in graph.assets.values():
            if not asset.fetched:
                logger.warning("Skipping %s: never fetched", asset.canonical_path)
        pages = list(graph.pages.values())
        index = PathIndex([*graph.pages, *(a.canonical_path for a in assets)], report=report)

        def make_rewriter(identifiers: dict[str, str]) -> Rewriter:
            return Rewriter(index, identifiers, canon, self.storage.gateway_url)

        leaves = [a for a in assets if a.kind is not AssetKind.STYLESHEET]
        sheets = [a for a in assets if a.kind is AssetKind.STYLESHEET]

        uploads = self._pass_leaf_assets(leaves, path_map, report)
        uploads += self._pass_stylesheets(sheets, path_map, make_rewriter, report)
        page_uploads, rounds = self._pass_pages(pages, path_map, make_rewriter, report)
        uploads += page_uploads

        logger.info(
            "Published %d path(s) from %s with %d upload(s), %d issue(s)",
            len(path_map), graph.hostname, uploads, len(report),
        )
        return PublishResult(path_map=path_map, report=report, page_rounds=rounds, uploads=uploads)


def publish(
    graph: SiteGraph,
    storage: StorageClient,
    options: Optional[PublishOptions] = None,
    cancel: Optional[CancelToken] = None,
) -> PublishResult:
    """Shortcut for ``Publisher(storage, options, cancel).publish(graph)``."""
    return Publisher(storage, options, cancel).publish(graph)
