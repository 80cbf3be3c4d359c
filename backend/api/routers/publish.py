"""Publish and estimate endpoints.

Routes
------
POST /publish               Body: {"hostname": "example.com", "dry_run": true}
GET  /estimate/{hostname}   Size and rough cost of a saved snapshot
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from backend.errors import EmptyManifest, UploadFailure
from backend.pipeline import estimate_cost, run_publish
from backend.publish import make_storage_client

router = APIRouter()


class PublishRequest(BaseModel):
    hostname: str
    dry_run: bool = False
    aliases: bool = False


class PublishResponse(BaseModel):
    deployment_id: str
    manifest_id: str
    manifest_url: str
    routes: int
    issues: list[str]


@router.post("/publish", response_model=PublishResponse, status_code=201)
def publish_endpoint(body: PublishRequest, request: Request) -> dict[str, Any]:
    """Publish a previously extracted site and upload its manifest."""
    conn = request.app.state.db
    storage = make_storage_client(dry_run=body.dry_run)
    try:
        result = run_publish(
            conn, body.hostname, storage, aliases=body.aliases, dry_run=body.dry_run
        )
    except EmptyManifest as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except UploadFailure as exc:
        raise HTTPException(status_code=502, detail=f"Manifest upload failed: {exc}") from exc
    finally:
        storage.close()
    return result.to_dict()


@router.get("/estimate/{hostname}")
def estimate_endpoint(hostname: str, request: Request) -> dict[str, Any]:
    """Return the size and estimated storage cost of a saved snapshot."""
    estimate = estimate_cost(request.app.state.db, hostname)
    if estimate.pages == 0 and estimate.assets == 0:
        raise HTTPException(status_code=404, detail=f"Nothing extracted for {hostname!r}")
    return estimate.to_dict()
