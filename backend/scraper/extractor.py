"""Document parsing: turns a rendered :class:`RawPage` into links and asset references."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from backend.paths.references import iter_css_references, parse_srcset
from backend.scraper.models import RawPage

# Signatures of error documents served with a 200 status (static-site 404
# templates, S3 access-denied bodies).
ERROR_PAGE_MARKERS = (
    '<h1 id="_top" data-page-title="" class="astro-jbfsktt5">404</h1>',
    "Page not found",
    "<Code>AccessDenied</Code>",
    "<Message>Access Denied</Message>",
)

NAV_SELECTORS = "nav a[href], .navigation a[href], .nav a[href], .menu a[href], .sidebar a[href]"

# Conventional documentation routes probed on every crawl; sites whose
# navigation is built by JavaScript often never expose them in the DOM.
DOC_PATHS = (
    "/quickstart", "/quickstart/", "/quickstart.html",
    "/api", "/api/", "/api.html",
    "/docs/api", "/docs/api/",
    "/examples", "/examples/", "/examples.html",
    "/bulk-uploads", "/bulk-uploads/",
    "/examples/bulk-uploads", "/examples/bulk-uploads/",
    "/references", "/references/", "/references.html",
    "/docs/references", "/docs/references/",
    "/glossary", "/glossary/", "/glossary.html",
)

# (tag, attribute) pairs whose value is an asset URL.
_ASSET_ATTRS = (
    ("script", "src"),
    ("img", "src"),
    ("img", "data-src"),
    ("source", "src"),
    ("video", "src"),
    ("video", "poster"),
    ("audio", "src"),
    ("track", "src"),
)


@dataclass
class ParsedDocument:
    """Everything the crawler needs from one rendered page.

    ``links`` and ``asset_refs`` hold raw reference strings as written in the
    document; resolve them against ``base_url``.
    """

    base_url: str
    title: str = ""
    links: List[str] = field(default_factory=list)
    asset_refs: List[str] = field(default_factory=list)

    def resolve(self, reference: str) -> str:
        return urljoin(self.base_url, reference.strip())


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _dedup(values: List[str]) -> List[str]:
    return [v for v in dict.fromkeys(v.strip() for v in values) if v]


def _effective_base_url(soup: BeautifulSoup, page_url: str) -> str:
    base = soup.find("base", href=True)
    if base is not None:
        try:
            return urljoin(page_url, base["href"].strip())
        except ValueError:
            return page_url
    return page_url


def _extract_title(soup: BeautifulSoup) -> str:
    if soup.title is not None and soup.title.string:
        return soup.title.string.strip()
    return ""


def _extract_links(soup: BeautifulSoup) -> List[str]:
    """Return ``<a href>`` values, then those inside navigation containers.

    Fragment-only links and empty hrefs are excluded.
    """
    hrefs = [a["href"] for a in soup.find_all("a", href=True)]
    hrefs += [a["href"] for a in soup.select(NAV_SELECTORS)]
    return [h for h in _dedup(hrefs) if not h.startswith("#")]


def _is_stylesheet_or_icon(rel: List[str]) -> bool:
    rel = [r.lower() for r in rel]
    return "stylesheet" in rel or any("icon" in r for r in rel)


def _extract_asset_refs(soup: BeautifulSoup) -> List[str]:
    refs: List[str] = []
    for link in soup.find_all("link", href=True):
        if _is_stylesheet_or_icon(link.get("rel") or []):
            refs.append(link["href"])
    for tag_name, attr in _ASSET_ATTRS:
        for tag in soup.find_all(tag_name, attrs={attr: True}):
            refs.append(tag[attr])
    for tag in soup.find_all(["img", "source"], srcset=True):
        refs.extend(url for url, _ in parse_srcset(tag["srcset"]))
    for style in soup.find_all("style"):
        refs.extend(span.value for span in iter_css_references(style.get_text()))
    for tag in soup.find_all(style=True):
        refs.extend(span.value for span in iter_css_references(tag["style"]))
    return [r for r in _dedup(refs) if not r.startswith(("data:", "#"))]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def detect_error_page(html: str) -> Optional[str]:
    """Return the first error-page marker found in *html*, or ``None``."""
    for marker in ERROR_PAGE_MARKERS:
        if marker in html:
            return marker
    return None


def doc_path_probes(seed_url: str) -> List[str]:
    """Absolute URLs of the conventional documentation paths on the seed's host."""
    return [urljoin(seed_url, path) for path in DOC_PATHS]


def parse_document(raw: RawPage) -> ParsedDocument:
    """Extract title, outbound links and asset references from *raw*.

    Relative references resolve against the document's final URL (after
    redirects) or its ``<base href>`` when one is present.
    """
    soup = BeautifulSoup(raw.html, "html.parser")
    base_url = _effective_base_url(soup, raw.final_url or raw.url)
    return ParsedDocument(
        base_url=base_url,
        title=_extract_title(soup),
        links=_extract_links(soup),
        asset_refs=_extract_asset_refs(soup),
    )
