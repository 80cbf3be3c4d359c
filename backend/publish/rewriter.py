"""Rewrite same-site references in stylesheets and pages to storage URLs.

A :class:`Rewriter` is bound to a fixed view of the identifier map.  For each
reference it finds, it parses the raw string with the
:class:`~backend.paths.Canonicalizer`, resolves the key to a stored path with
the :class:`~backend.paths.PathIndex`, and, when that path already has an
identifier, replaces the reference with ``<gateway>/<identifier>`` (query and
fragment re-attached).  References that are external, non-navigable, already
on the storage network, or not yet published are left exactly as written.
"""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from backend.paths.canonical import Canonicalizer, ReferenceKind
from backend.paths.index import PathIndex
from backend.paths.references import (
    format_srcset,
    iter_css_references,
    iter_script_references,
    parse_srcset,
    substitute,
)

logger = logging.getLogger(__name__)

# Attribute -> reference kind, for any element carrying it.
URL_ATTRS = {
    "href": ReferenceKind.HREF,
    "src": ReferenceKind.SRC,
    "data-src": ReferenceKind.SRC,
    "data-href": ReferenceKind.HREF,
    "action": ReferenceKind.HREF,
    "poster": ReferenceKind.SRC,
}
# Subresource integrity no longer matches once the target changes.
_STALE_ATTRS = ("integrity", "crossorigin", "referrerpolicy")
# <meta name=...> / <meta property=...> values whose content is a URL.
URL_METAS = frozenset({
    "og:image",
    "og:image:url",
    "og:image:secure_url",
    "og:url",
    "og:audio",
    "og:video",
    "twitter:image",
    "twitter:image:src",
    "twitter:url",
    "msapplication-tileimage",
    "msapplication-config",
})
# "5; url=/next" in <meta http-equiv="refresh">.
_REFRESH_RE = re.compile(
    r"""^(?P<head>\s*[\d.]*\s*[;,]\s*url\s*=\s*)(?P<q>["']?)(?P<url>[^"']+)(?P=q)(?P<tail>\s*)$""",
    re.IGNORECASE,
)


class Rewriter:
    """Rewrites references against one snapshot of published identifiers.

    Args:
        index: Lookup over every stored path of the site.
        identifiers: Stored path → identifier; only these paths are rewritten.
        canonicalizer: Reference parser bound to the site host.
        gateway_url: Base URL rewritten references point at.
    """

    def __init__(
        self,
        index: PathIndex,
        identifiers: Mapping[str, str],
        canonicalizer: Canonicalizer,
        gateway_url: str,
    ) -> None:
        self.index = index
        self.identifiers = identifiers
        self.canon = canonicalizer
        self.gateway_url = gateway_url.rstrip("/")

    # ------------------------------------------------------------------
    # Single references
    # ------------------------------------------------------------------

    def resolve(self, raw: str, context: str, kind: ReferenceKind = ReferenceKind.HREF) -> Optional[str]:
        """Stored path *raw* refers to, or ``None`` if it is not a site reference."""
        return self.index.resolve(self.canon.parse(raw, context, kind))

    def target_for(self, raw: str, context: str, kind: ReferenceKind = ReferenceKind.HREF) -> Optional[str]:
        """Replacement for *raw*, or ``None`` to leave it untouched."""
        ref = self.canon.parse(raw, context, kind)
        stored = self.index.resolve(ref)
        if stored is None:
            return None
        identifier = self.identifiers.get(stored)
        if identifier is None:
            return None
        return ref.reattach(f"{self.gateway_url}/{identifier}")

    # ------------------------------------------------------------------
    # Text formats
    # ------------------------------------------------------------------

    def rewrite_css(self, css: str, context: str) -> str:
        return substitute(
            css,
            iter_css_references(css),
            lambda span: self.target_for(span.value, context, span.kind),
        )

    def rewrite_script(self, script: str, context: str) -> str:
        return substitute(
            script,
            iter_script_references(script),
            lambda span: self.target_for(span.value, context, span.kind),
        )

    def rewrite_srcset(self, value: str, context: str) -> str:
        candidates = [
            (self.target_for(url, context, ReferenceKind.SRCSET) or url, desc)
            for url, desc in parse_srcset(value)
        ]
        return format_srcset(candidates)

    def rewrite_meta(self, tag: Tag, context: str) -> Optional[str]:
        """New ``content`` for a URL-valued ``<meta>``, or ``None``.

        Only social-card and tile URLs and the target of a refresh are
        references; other metas (robots, description) hold plain text.
        """
        content = tag["content"]
        if (tag.get("http-equiv") or "").strip().lower() == "refresh":
            m = _REFRESH_RE.match(content)
            if m is None:
                return None
            target = self.target_for(m.group("url"), context)
            if target is None:
                return None
            return f"{m.group('head')}{m.group('q')}{target}{m.group('q')}{m.group('tail')}"
        name = (tag.get("property") or tag.get("name") or "").strip().lower()
        if name not in URL_METAS:
            return None
        return self.target_for(content, context)

    def css_dependencies(self, css: str, context: str) -> set[str]:
        """Stored paths referenced by *css* (imports and ``url()`` values)."""
        found = set()
        for span in iter_css_references(css):
            stored = self.resolve(span.value, context, span.kind)
            if stored is not None:
                found.add(stored)
        return found

    # ------------------------------------------------------------------
    # HTML
    # ------------------------------------------------------------------

    def rewrite_html(self, html: str, page_url: str) -> str:
        """Return *html* with every resolvable reference rewritten.

        Covers URL attributes, ``srcset``, URL-valued ``<meta content>``, ``style``
        attributes, ``<style>`` blocks and inline ``<script>`` bodies.
        """
        soup = BeautifulSoup(html, "html.parser")
        context = page_url
        base = soup.find("base", href=True)
        if base is not None:
            try:
                context = urljoin(page_url, base["href"].strip())
            except ValueError:
                logger.info("Ignoring malformed <base href> on %s", page_url)

        for attr, kind in URL_ATTRS.items():
            for tag in soup.find_all(attrs={attr: True}):
                if tag.name == "base":
                    continue
                target = self.target_for(tag[attr], context, kind)
                if target is not None:
                    tag[attr] = target
                    for stale in _STALE_ATTRS:
                        tag.attrs.pop(stale, None)

        for tag in soup.find_all("meta", content=True):
            content = self.rewrite_meta(tag, context)
            if content is not None:
                tag["content"] = content

        for tag in soup.find_all(srcset=True):
            tag["srcset"] = self.rewrite_srcset(tag["srcset"], context)

        for tag in soup.find_all(style=True):
            tag["style"] = self.rewrite_css(tag["style"], context)

        for tag in soup.find_all("style"):
            if tag.string:
                tag.string.replace_with(
                    type(tag.string)(self.rewrite_css(str(tag.string), context))
                )

        for tag in soup.find_all("script"):
            if tag.string and not tag.get("src"):
                tag.string.replace_with(
                    type(tag.string)(self.rewrite_script(str(tag.string), context))
                )

        return str(soup)
