"""Scraper package: render backends, document parsing and the site crawl."""

from backend.scraper.crawler import ExtractResult, ExtractSettings, extract
from backend.scraper.fetcher import BrowserRenderer, HttpRenderer, RenderBackend, make_renderer
from backend.scraper.models import Asset, AssetKind, Page, RawAsset, RawPage, SiteGraph

__all__ = [
    "extract",
    "ExtractResult",
    "ExtractSettings",
    "RenderBackend",
    "BrowserRenderer",
    "HttpRenderer",
    "make_renderer",
    "Asset",
    "AssetKind",
    "Page",
    "RawAsset",
    "RawPage",
    "SiteGraph",
]
