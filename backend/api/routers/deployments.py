"""Deployment history.

Routes
------
GET /deployments                 Most recent deployments (?hostname=&limit=)
GET /deployments/{id}            One deployment, including its manifest
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from backend.db.deployments import get_deployment, list_deployments

router = APIRouter()


@router.get("", response_model=list[dict[str, Any]])
def list_deployments_endpoint(
    request: Request,
    hostname: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[dict[str, Any]]:
    rows = list_deployments(request.app.state.db, hostname=hostname, limit=limit)
    return [d.to_dict() for d in rows]


@router.get("/{deployment_id}")
def get_deployment_endpoint(deployment_id: str, request: Request) -> dict[str, Any]:
    deployment = get_deployment(request.app.state.db, deployment_id)
    if deployment is None:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return {**deployment.to_dict(), "manifest": deployment.manifest}
