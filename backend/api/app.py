"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection (shared across all
requests via ``request.app.state.db``) and initialises the schema.  On
shutdown it closes the connection cleanly.

Routers
-------

    /extract       crawl a site into the blob store
    /publish       publish a saved site and upload its manifest
    /estimate      size and cost of a saved site
    /deployments   deployment history
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.db import get_connection, init_db

from backend.api.routers import deployments as deployments_router
from backend.api.routers import extract as extract_router
from backend.api.routers import publish as publish_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the DB on startup and close it on shutdown."""
    conn = get_connection()
    init_db(conn)
    app.state.db = conn
    try:
        yield
    finally:
        conn.close()


def create_app() -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    app = FastAPI(
        title="Permasite API",
        description=(
            "Crawl a website, republish it onto permanent content-addressed "
            "storage, and serve the resulting routing manifest."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(extract_router.router, prefix="/extract", tags=["extract"])
    app.include_router(publish_router.router, tags=["publish"])
    app.include_router(deployments_router.router, prefix="/deployments", tags=["deployments"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn backend.api.app:app --reload
app = create_app()
