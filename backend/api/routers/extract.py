"""Extraction endpoint.

Routes
------
POST /extract    Body: {"url": "https://...", "max_pages": 20}    → run_extract
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, HttpUrl

from backend.errors import RenderBackendUnavailable
from backend.pipeline import run_extract
from backend.scraper import ExtractSettings, make_renderer

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ExtractRequest(BaseModel):
    url: HttpUrl
    max_pages: Optional[int] = Field(default=None, ge=1)
    delay_ms: Optional[int] = Field(default=None, ge=0)
    render_mode: Optional[str] = Field(default=None, pattern="^(browser|http|static)$")
    probe_doc_paths: bool = True


class ExtractResponse(BaseModel):
    hostname: str
    pages: list[str]
    assets: list[str]
    visited: int
    issues: list[str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=ExtractResponse, status_code=201)
def extract_endpoint(body: ExtractRequest, request: Request) -> dict[str, Any]:
    """Crawl a site and save its pages and assets to the blob store."""
    conn = request.app.state.db
    config = ExtractSettings.from_settings(
        max_pages=body.max_pages,
        per_request_delay=body.delay_ms / 1000 if body.delay_ms is not None else None,
        probe_doc_paths=body.probe_doc_paths,
    )
    renderer = make_renderer(body.render_mode)
    try:
        result = run_extract(conn, str(body.url), config, renderer=renderer)
    except RenderBackendUnavailable as exc:
        raise HTTPException(status_code=502, detail=f"Render backend unavailable: {exc}") from exc
    finally:
        renderer.release()

    graph = result.graph
    return {
        "hostname": graph.hostname,
        "pages": sorted(graph.pages),
        "assets": sorted(graph.assets),
        "visited": result.visited,
        "issues": [str(i) for i in result.report.issues],
    }
