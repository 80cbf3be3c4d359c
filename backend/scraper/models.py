"""Data models for the extractor: raw fetches and the site graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass
class RawPage:
    """The rendered document for a single URL fetch."""

    url: str
    html: str
    status_code: int
    final_url: str = ""

    @property
    def content(self) -> bytes:
        return self.html.encode("utf-8")


@dataclass
class RawAsset:
    """The bytes of a single asset fetch."""

    url: str
    content: bytes
    status_code: int
    content_type: str = ""


class AssetKind(str, Enum):
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"
    OTHER = "other"


@dataclass
class Page:
    """A captured page.  ``raw_content`` is never modified after capture.

    ``final_url`` is where the document was served from after redirects;
    its relative references resolve against it, not against ``url``.
    """

    url: str
    canonical_path: str
    raw_content: bytes
    final_url: str = ""
    title: str = ""
    outbound_links: List[str] = field(default_factory=list)
    discovered_asset_refs: List[str] = field(default_factory=list)

    @property
    def html(self) -> str:
        return self.raw_content.decode("utf-8", errors="replace")

    @property
    def base_url(self) -> str:
        return self.final_url or self.url


@dataclass
class Asset:
    """A discovered asset; ``raw_content`` is ``None`` until fetched."""

    url: str
    canonical_path: str
    kind: AssetKind = AssetKind.OTHER
    mime_type: str = "application/octet-stream"
    raw_content: Optional[bytes] = None

    @property
    def fetched(self) -> bool:
        return self.raw_content is not None


@dataclass
class SiteGraph:
    """Pages and assets of one site, keyed by canonical path."""

    seed_url: str
    hostname: str
    pages: Dict[str, Page] = field(default_factory=dict)
    assets: Dict[str, Asset] = field(default_factory=dict)

    def add_page(self, page: Page) -> None:
        self.pages.setdefault(page.canonical_path, page)

    def add_asset(self, asset: Asset) -> None:
        self.assets.setdefault(asset.canonical_path, asset)

    @property
    def total_bytes(self) -> int:
        return sum(len(p.raw_content) for p in self.pages.values()) + sum(
            len(a.raw_content or b"") for a in self.assets.values()
        )

    def __len__(self) -> int:
        return len(self.pages) + len(self.assets)
