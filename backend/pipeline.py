"""End-to-end runs shared by the CLI and the API.

``run_extract`` crawls a site and saves the graph to the blob store;
``run_publish`` loads it back, publishes it, uploads the manifest and
records the deployment; ``estimate_cost`` sizes a saved snapshot.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

from backend.cancel import CancelToken
from backend.config import settings
from backend.db import deployments, snapshots
from backend.errors import EmptyManifest, RunReport
from backend.manifest import MANIFEST_CONTENT_TYPE, Manifest, build_manifest
from backend.publish import PublishOptions, Publisher, StorageClient
from backend.scraper import ExtractResult, ExtractSettings, RenderBackend, extract

logger = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    manifest_id: str
    manifest_url: str
    manifest: Manifest
    path_map: dict[str, str]
    report: RunReport = field(default_factory=RunReport)
    deployment_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "manifest_id": self.manifest_id,
            "manifest_url": self.manifest_url,
            "routes": len(self.manifest.routes),
            "issues": [str(i) for i in self.report.issues],
        }


@dataclass
class Estimate:
    hostname: str
    pages: int
    assets: int
    total_bytes: int
    cost: float

    @property
    def formatted_size(self) -> str:
        return format_bytes(self.total_bytes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "pages": self.pages,
            "assets": self.assets,
            "total_bytes": self.total_bytes,
            "formatted_size": self.formatted_size,
            "estimated_cost": self.cost,
        }


def format_bytes(size: int) -> str:
    """Human-readable size: ``0 Bytes``, ``1.5 KB``, ``2 MB``…"""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


def cost_for(total_bytes: int) -> float:
    """Rough storage cost at ``settings.cost_per_mb`` per megabyte."""
    return round(total_bytes / (1024 * 1024) * settings.cost_per_mb, 6)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def run_extract(
    conn: sqlite3.Connection,
    seed_url: str,
    config: Optional[ExtractSettings] = None,
    renderer: Optional[RenderBackend] = None,
    cancel: Optional[CancelToken] = None,
) -> ExtractResult:
    """Crawl *seed_url* and save the resulting graph under its hostname."""
    result = extract(seed_url, config, renderer=renderer, cancel=cancel)
    saved = snapshots.save_graph(conn, result.graph)
    logger.info("Saved %d blob(s) for %s", saved, result.graph.hostname)
    return result


def run_publish(
    conn: sqlite3.Connection,
    hostname: str,
    storage: StorageClient,
    options: Optional[PublishOptions] = None,
    aliases: bool = False,
    dry_run: bool = False,
    cancel: Optional[CancelToken] = None,
) -> DeploymentResult:
    """Publish the snapshot saved for *hostname* and upload its manifest.

    Raises:
        EmptyManifest: No page was saved for *hostname*, or nothing
            survived publishing.
        RunCancelled: Cancelled; no manifest is uploaded or recorded.
    """
    graph = snapshots.load_graph(conn, hostname)
    if not graph.pages:
        raise EmptyManifest(f"no pages saved for {hostname!r}; run extract first")
    logger.info(
        "Publishing %s: %d page(s), %d asset(s)", hostname, len(graph.pages), len(graph.assets)
    )
    publisher = Publisher(storage, options, cancel)
    result = publisher.publish(graph)
    manifest = build_manifest(result.path_map, aliases=aliases)

    tags = {
        "Content-Type": MANIFEST_CONTENT_TYPE,
        "Type": "manifest",
        "App-Name": publisher.options.app_name,
        "App-Version": publisher.options.app_version,
        "Original-URL": graph.seed_url,
    }
    manifest_id = publisher.upload(manifest.to_json().encode("utf-8"), MANIFEST_CONTENT_TYPE, tags)
    manifest_url = storage.url_for(manifest_id)

    deployment = deployments.create_deployment(
        conn,
        hostname=graph.hostname,
        manifest_id=manifest_id,
        manifest_url=manifest_url,
        manifest=manifest.to_dict(),
        issue_count=len(result.report),
        total_bytes=graph.total_bytes,
        estimated_cost=cost_for(graph.total_bytes),
        dry_run=dry_run,
    )
    logger.info("Manifest for %s at %s", hostname, manifest_url)
    return DeploymentResult(
        manifest_id=manifest_id,
        manifest_url=manifest_url,
        manifest=manifest,
        path_map=result.identifiers,
        report=result.report,
        deployment_id=deployment.id,
    )


def estimate_cost(conn: sqlite3.Connection, hostname: str) -> Estimate:
    """Size and rough cost of the snapshot saved for *hostname*."""
    graph = snapshots.load_graph(conn, hostname)
    size = graph.total_bytes
    return Estimate(
        hostname=graph.hostname,
        pages=len(graph.pages),
        assets=len(graph.assets),
        total_bytes=size,
        cost=cost_for(size),
    )
