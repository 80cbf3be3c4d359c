"""MIME type inference and asset classification."""

from __future__ import annotations

import posixpath
from urllib.parse import urlsplit

from backend.scraper.models import AssetKind

_MIME_TYPES = {
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "mjs": "application/javascript",
    "json": "application/json",
    "xml": "application/xml",
    "txt": "text/plain",
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
    "otf": "font/otf",
    "eot": "application/vnd.ms-fontobject",
    "webmanifest": "application/manifest+json",
}

DEFAULT_MIME = "application/octet-stream"


def extension_of(url: str) -> str:
    path = urlsplit(url).path
    return posixpath.splitext(path)[1].lstrip(".").lower()


def guess_mime_type(url: str) -> str:
    """Infer a MIME type from the URL's extension."""
    return _MIME_TYPES.get(extension_of(url), DEFAULT_MIME)


def resolve_mime_type(declared: str | None, url: str) -> str:
    """Prefer the declared ``Content-Type`` (parameters dropped), else infer."""
    if declared:
        mime = declared.split(";", 1)[0].strip().lower()
        if mime and mime != DEFAULT_MIME:
            return mime
    return guess_mime_type(url)


def classify(mime_type: str, url: str = "") -> AssetKind:
    mime = mime_type.lower()
    ext = extension_of(url) if url else ""
    if mime == "text/css" or ext == "css":
        return AssetKind.STYLESHEET
    if "javascript" in mime or ext in ("js", "mjs"):
        return AssetKind.SCRIPT
    if mime.startswith("image/"):
        return AssetKind.IMAGE
    if mime.startswith("font/") or ext in ("woff", "woff2", "ttf", "otf", "eot"):
        return AssetKind.FONT
    return AssetKind.OTHER
