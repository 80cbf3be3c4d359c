"""Centralised settings for the Permasite backend.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / blob store
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("PERMASITE_WORKSPACE", Path.home() / ".permasite_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database holding blobs and deployments."""
        return self.workspace_dir / "permasite.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Extractor
    # ------------------------------------------------------------------
    max_pages: int = field(
        default_factory=lambda: int(os.environ.get("MAX_PAGES", "100"))
    )
    max_links_per_page: int = field(
        default_factory=lambda: int(os.environ.get("MAX_LINKS_PER_PAGE", "10"))
    )
    rate_limit_delay: float = field(
        default_factory=lambda: float(os.environ.get("RATE_LIMIT_DELAY", "1.0"))
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "15.0"))
    )
    same_domain_only: bool = field(
        default_factory=lambda: _env_bool("SAME_DOMAIN_ONLY", "true")
    )
    asset_workers: int = field(
        default_factory=lambda: int(os.environ.get("ASSET_WORKERS", "4"))
    )
    # "browser" renders every page with Playwright; "http" fetches with httpx
    # and only escalates to the browser for SPA shells.
    render_mode: str = field(
        default_factory=lambda: os.environ.get("RENDER_MODE", "browser")
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "USER_AGENT", "Mozilla/5.0 (compatible; Permasite/1.0)"
        )
    )

    # ------------------------------------------------------------------
    # Storage network / publisher
    # ------------------------------------------------------------------
    upload_url: str = field(
        default_factory=lambda: os.environ.get("UPLOAD_URL", "https://upload.ardrive.io/v1/tx")
    )
    gateway_url: str = field(
        default_factory=lambda: os.environ.get("GATEWAY_URL", "https://arweave.net")
    )
    storage_api_key: str = field(
        default_factory=lambda: os.environ.get("STORAGE_API_KEY", "")
    )
    upload_concurrency: int = field(
        default_factory=lambda: int(os.environ.get("UPLOAD_CONCURRENCY", "4"))
    )
    upload_max_retries: int = field(
        default_factory=lambda: int(os.environ.get("UPLOAD_MAX_RETRIES", "3"))
    )
    upload_backoff: float = field(
        default_factory=lambda: float(os.environ.get("UPLOAD_BACKOFF", "1.0"))
    )
    upload_timeout: float = field(
        default_factory=lambda: float(os.environ.get("UPLOAD_TIMEOUT", "60.0"))
    )
    page_rounds: int = field(
        default_factory=lambda: int(os.environ.get("PAGE_ROUNDS", "2"))
    )
    app_name: str = "Permasite"
    app_version: str = "1.0.0"

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------
    manifest_schema: str = field(
        default_factory=lambda: os.environ.get("MANIFEST_SCHEMA", "arweave/paths")
    )
    manifest_version: str = field(
        default_factory=lambda: os.environ.get("MANIFEST_VERSION", "0.1.0")
    )

    # ------------------------------------------------------------------
    # Estimate / logging
    # ------------------------------------------------------------------
    cost_per_mb: float = field(
        default_factory=lambda: float(os.environ.get("COST_PER_MB", "0.01"))
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from backend.config import settings
settings = Settings()
