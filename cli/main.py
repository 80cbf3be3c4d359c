"""Permasite CLI: entry-point for all backend operations.

Usage:
    python cli/main.py --help

Commands:
    extract      crawl a site into the local blob store
    publish      upload a crawled site and its manifest
    estimate     size and rough cost of a crawled site
    deployments  publish history
    db init      create the local database
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from backend.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import json
import logging
from typing import Optional

import typer

from backend.cancel import CancelToken
from backend.config import settings
from backend.db import get_connection, init_db
from backend.db.deployments import list_deployments
from backend.errors import (
    EmptyManifest,
    RenderBackendUnavailable,
    RunCancelled,
    RunReport,
    UploadFailure,
)

app = typer.Typer(
    name="permasite",
    help="Republish a website onto permanent content-addressed storage.",
    no_args_is_help=True,
)

db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")

EXIT_FAILED = 1
EXIT_PARTIAL = 2


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_issues(command: str, report: RunReport) -> None:
    if not report.issues:
        return
    typer.echo(f"[{command}] {len(report.issues)} warning(s):")
    for issue in report.issues:
        typer.echo(f"  {issue}")


def _finish(command: str, report: RunReport, strict: bool) -> None:
    _print_issues(command, report)
    if strict and report.failures:
        typer.echo(f"[{command}] {len(report.failures)} item(s) failed (--strict).")
        raise typer.Exit(EXIT_PARTIAL)


# ---------------------------------------------------------------------------
# DB
# ---------------------------------------------------------------------------

@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Extract
# ---------------------------------------------------------------------------

@app.command("extract")
def extract_cmd(
    url: str = typer.Argument(..., help="Seed URL to crawl."),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Maximum pages to store."),
    delay: Optional[int] = typer.Option(None, "--delay", min=0, help="Delay between requests in ms."),
    render_mode: Optional[str] = typer.Option(
        None, "--render-mode", help="Page rendering: browser | http | static."
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Abort the run after N seconds."),
    probe: bool = typer.Option(True, "--probe/--no-probe", help="Also try common documentation paths."),
    strict: bool = typer.Option(False, "--strict", help="Exit 2 if any page or asset failed."),
) -> None:
    """Crawl a site breadth-first and save its pages and assets locally."""
    from backend.pipeline import run_extract
    from backend.scraper import ExtractSettings, make_renderer

    try:
        renderer = make_renderer(render_mode)
    except ValueError as exc:
        typer.echo(f"[extract] {exc}")
        raise typer.Exit(EXIT_FAILED)

    config = ExtractSettings.from_settings(
        max_pages=max_pages,
        per_request_delay=delay / 1000 if delay is not None else None,
        probe_doc_paths=probe,
    )
    conn = get_connection()
    init_db(conn)
    typer.echo(f"[extract] Crawling {url!r} (max {config.max_pages} pages) …")
    try:
        result = run_extract(conn, url, config, renderer=renderer, cancel=CancelToken(timeout=timeout))
    except (RenderBackendUnavailable, RunCancelled) as exc:
        typer.echo(f"[extract] Aborted: {exc}")
        raise typer.Exit(EXIT_FAILED)
    finally:
        renderer.release()
        conn.close()

    graph = result.graph
    typer.echo(
        f"[extract] {len(graph.pages)} page(s), {len(graph.assets)} asset(s) "
        f"saved for {graph.hostname}"
    )
    for path in sorted(graph.pages):
        typer.echo(f"  {path}")
    _finish("extract", result.report, strict)


# ---------------------------------------------------------------------------
# Publish
# ---------------------------------------------------------------------------

@app.command("publish")
def publish_cmd(
    hostname: str = typer.Argument(..., help="Hostname of a previously extracted site."),
    wallet: Optional[Path] = typer.Option(None, "--wallet", help="JSON wallet file."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Keep uploads in memory."),
    aliases: bool = typer.Option(False, "--aliases", help="Add directory routes for index pages."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Abort the run after N seconds."),
    strict: bool = typer.Option(False, "--strict", help="Exit 2 if any page or asset failed."),
) -> None:
    """Upload an extracted site and its routing manifest."""
    from backend.pipeline import run_publish
    from backend.publish import make_storage_client

    try:
        storage = make_storage_client(wallet, dry_run=dry_run)
    except ValueError as exc:
        typer.echo(f"[publish] {exc}")
        raise typer.Exit(EXIT_FAILED)

    conn = get_connection()
    init_db(conn)
    typer.echo(f"[publish] Publishing {hostname!r}{' (dry run)' if dry_run else ''} …")
    try:
        result = run_publish(
            conn, hostname, storage,
            aliases=aliases, dry_run=dry_run, cancel=CancelToken(timeout=timeout),
        )
    except (EmptyManifest, UploadFailure, RunCancelled) as exc:
        typer.echo(f"[publish] Failed: {exc}")
        raise typer.Exit(EXIT_FAILED)
    finally:
        storage.close()
        conn.close()

    typer.echo(f"[publish] {len(result.manifest.routes)} route(s) published")
    typer.echo(f"[publish] Manifest : {result.manifest_id}")
    typer.echo(f"[publish] URL      : {result.manifest_url}")
    _finish("publish", result.report, strict)


# ---------------------------------------------------------------------------
# Estimate / history
# ---------------------------------------------------------------------------

@app.command("estimate")
def estimate_cmd(
    hostname: str = typer.Argument(..., help="Hostname of a previously extracted site."),
) -> None:
    """Print the size and rough storage cost of an extracted site."""
    from backend.pipeline import estimate_cost

    conn = get_connection()
    init_db(conn)
    try:
        estimate = estimate_cost(conn, hostname)
    finally:
        conn.close()
    if estimate.pages == 0 and estimate.assets == 0:
        typer.echo(f"[estimate] Nothing extracted for {hostname!r}.")
        raise typer.Exit(EXIT_FAILED)
    typer.echo(f"[estimate] {estimate.pages} page(s), {estimate.assets} asset(s)")
    typer.echo(f"[estimate] Size : {estimate.formatted_size}")
    typer.echo(f"[estimate] Cost : ~{estimate.cost:.6f} AR")


@app.command("deployments")
def deployments_cmd(
    hostname: Optional[str] = typer.Option(None, "--hostname", help="Filter by hostname."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """List recorded deployments, newest first."""
    conn = get_connection()
    init_db(conn)
    try:
        rows = list_deployments(conn, hostname=hostname)
    finally:
        conn.close()
    if as_json:
        typer.echo(json.dumps([d.to_dict() for d in rows], indent=2))
        return
    if not rows:
        typer.echo("[deployments] No deployments found.")
        return
    for d in rows:
        flag = "  (dry run)" if d.dry_run else ""
        typer.echo(f"  {d.manifest_id}  {d.hostname}  {d.route_count} route(s){flag}")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
