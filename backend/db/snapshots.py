"""Persist a :class:`SiteGraph` into the blob store and load it back.

Each page and fetched asset becomes one blob keyed
``<hostname>/<canonical path without leading slash>``; everything else the
publisher needs (URL, kind, title, discovered references) rides along in
the blob's metadata.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from backend.db import blobs
from backend.scraper.models import Asset, AssetKind, Page, SiteGraph

logger = logging.getLogger(__name__)

PAGE = "page"
ASSET = "asset"


def blob_key(hostname: str, canonical_path: str) -> str:
    return f"{hostname}/{canonical_path.lstrip('/')}"


def host_prefix(hostname: str) -> str:
    return f"{hostname.strip('/')}/"


def save_graph(conn: sqlite3.Connection, graph: SiteGraph, replace: bool = True) -> int:
    """Write every page and fetched asset of *graph*; returns the blob count.

    With *replace*, blobs left over from an earlier extraction of the same
    host are deleted first so the stored snapshot matches *graph* exactly.
    """
    if replace and blobs.list_keys(conn, host_prefix(graph.hostname)):
        removed = blobs.delete_prefix(conn, host_prefix(graph.hostname))
        logger.info("Replaced previous snapshot of %s (%d blob(s))", graph.hostname, removed)

    count = 0
    for page in graph.pages.values():
        meta: dict[str, Any] = {
            "type": PAGE,
            "seed_url": graph.seed_url,
            "url": page.url,
            "final_url": page.final_url,
            "canonical_path": page.canonical_path,
            "title": page.title,
            "outbound_links": page.outbound_links,
            "discovered_asset_refs": page.discovered_asset_refs,
        }
        blobs.put_blob(
            conn, blob_key(graph.hostname, page.canonical_path),
            page.raw_content, "text/html", meta,
        )
        count += 1
    for asset in graph.assets.values():
        if not asset.fetched:
            continue
        meta = {
            "type": ASSET,
            "seed_url": graph.seed_url,
            "url": asset.url,
            "canonical_path": asset.canonical_path,
            "kind": asset.kind.value,
        }
        blobs.put_blob(
            conn, blob_key(graph.hostname, asset.canonical_path),
            asset.raw_content or b"", asset.mime_type, meta,
        )
        count += 1
    return count


def load_graph(conn: sqlite3.Connection, hostname: str) -> SiteGraph:
    """Rebuild the site graph saved for *hostname* (empty if nothing was saved)."""
    hostname = hostname.strip("/")
    keys = blobs.list_keys(conn, host_prefix(hostname))
    graph = SiteGraph(seed_url=f"https://{hostname}/", hostname=hostname)
    for key, blob in blobs.get_many(conn, keys).items():
        meta = blob.metadata
        graph.seed_url = meta.get("seed_url", graph.seed_url)
        path = meta.get("canonical_path") or "/" + key[len(host_prefix(hostname)):]
        if meta.get("type") == PAGE:
            graph.add_page(
                Page(
                    url=meta.get("url", ""),
                    canonical_path=path,
                    raw_content=blob.content,
                    final_url=meta.get("final_url", ""),
                    title=meta.get("title", ""),
                    outbound_links=list(meta.get("outbound_links", [])),
                    discovered_asset_refs=list(meta.get("discovered_asset_refs", [])),
                )
            )
        else:
            graph.add_asset(
                Asset(
                    url=meta.get("url", ""),
                    canonical_path=path,
                    kind=AssetKind(meta.get("kind", AssetKind.OTHER.value)),
                    mime_type=blob.content_type,
                    raw_content=blob.content,
                )
            )
    return graph
