"""Reference parsing, canonical keys, and their inverse (stored-path variants).

A *reference* is whatever string a document uses to point at something: an
``href``, a CSS ``url()``, a ``srcset`` candidate, an ``import("…")``
specifier.  :meth:`Canonicalizer.parse` turns it into a typed
:class:`Reference`; navigable same-site references carry a canonical *key*
(absolute, percent-decoded, no query/fragment, no trailing slash except the
root).  Everything else passes through untouched.

:func:`variants` goes the other way: from a concrete stored path to every key
a reference could legitimately use for it.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit

NON_NAVIGABLE_SCHEMES = frozenset({"mailto", "tel", "javascript", "data", "blob", "about"})
DEFAULT_STORAGE_HOSTS = frozenset({"arweave.net"})
PAGE_EXTENSIONS = (".html", ".htm")
INDEX_FILE = "index.html"

_SLASHES = re.compile(r"/{2,}")


class ReferenceKind(str, Enum):
    HREF = "href"
    SRC = "src"
    SRCSET = "srcset"
    CSS_URL = "css_url"
    CSS_IMPORT = "css_import"
    SCRIPT_IMPORT = "script_import"
    JSON_PATH = "json_path"


class Disposition(str, Enum):
    SITE = "site"
    EXTERNAL = "external"
    NON_NAVIGABLE = "non_navigable"
    FRAGMENT = "fragment"
    STORAGE = "storage"
    EMPTY = "empty"


@dataclass(frozen=True)
class Reference:
    """A parsed reference plus the context it was found in."""

    raw: str
    context_path: str
    kind: ReferenceKind
    disposition: Disposition
    key: Optional[str] = None
    query: str = ""
    fragment: str = ""

    @property
    def navigable(self) -> bool:
        return self.disposition is Disposition.SITE

    def reattach(self, target: str) -> str:
        """Return *target* with this reference's query and fragment put back."""
        if self.query:
            target = f"{target}?{self.query}"
        if self.fragment:
            target = f"{target}#{self.fragment}"
        return target


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_KEEP_ENCODED = {"%25": "\x00", "%3F": "\x01", "%23": "\x02"}
_KEEP_ENCODED_RE = re.compile(r"%(?:25|3[fF]|23)")


def _decode(path: str) -> str:
    # %, ? and # stay encoded so that decoding twice is a no-op.
    protected = _KEEP_ENCODED_RE.sub(lambda m: _KEEP_ENCODED[m.group(0).upper()], path)
    decoded = unquote(protected)
    for escape, placeholder in _KEEP_ENCODED.items():
        decoded = decoded.replace(placeholder, escape)
    return decoded


def _normalize_path(path: str) -> str:
    """Decode, collapse slashes, resolve dot segments, drop the trailing slash."""
    path = _SLASHES.sub("/", _decode(path))
    if not path.startswith("/"):
        path = "/" + path
    normalized = posixpath.normpath(path)
    # normpath keeps a leading "//" (POSIX) and never returns an empty string
    return "/" + normalized.lstrip("/")


def _context_dir(context_path: str) -> str:
    if context_path.endswith("/"):
        return context_path
    return posixpath.dirname(context_path).rstrip("/") + "/"


def _host_matches(host: str, candidates: Iterable[str]) -> bool:
    return any(host == h or host.endswith("." + h) for h in candidates)


# ---------------------------------------------------------------------------
# Canonicalizer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Canonicalizer:
    """Canonicalizes references for one site.

    Args:
        site_host: Hostname of the site being mirrored.  Absolute URLs on any
            other host are external.  When ``None``, the host is taken from
            the context when the context is itself a full URL.
        storage_hosts: Gateway hosts of the storage network; references to
            them (or their subdomains) are already published and never
            rewritten again.
    """

    site_host: Optional[str] = None
    storage_hosts: frozenset[str] = DEFAULT_STORAGE_HOSTS

    def parse(
        self,
        raw: str,
        context_path: str = "/",
        kind: ReferenceKind = ReferenceKind.HREF,
    ) -> Reference:
        site_host = self.site_host
        context = urlsplit(context_path)
        if context.scheme in ("http", "https"):
            site_host = site_host or (context.hostname or None)
            context_path = context.path or "/"

        def passthrough(disposition: Disposition) -> Reference:
            return Reference(raw, context_path, kind, disposition)

        text = raw.strip()
        if not text:
            return passthrough(Disposition.EMPTY)
        if text.startswith("#"):
            return passthrough(Disposition.FRAGMENT)

        try:
            parts = urlsplit(text)
        except ValueError:
            # Malformed (e.g. an unclosed IPv6 bracket); nothing to rewrite.
            return passthrough(Disposition.EXTERNAL)
        scheme = parts.scheme.lower()
        if scheme in NON_NAVIGABLE_SCHEMES:
            return passthrough(Disposition.NON_NAVIGABLE)
        if scheme and scheme not in ("http", "https"):
            return passthrough(Disposition.EXTERNAL)

        if parts.netloc:
            host = (parts.hostname or "").lower()
            if _host_matches(host, self.storage_hosts):
                return passthrough(Disposition.STORAGE)
            if not site_host or host != site_host.lower():
                return passthrough(Disposition.EXTERNAL)

        path = parts.path
        if not path:
            path = "/" if parts.netloc else context_path
        elif not path.startswith("/"):
            path = _context_dir(context_path) + path

        return Reference(
            raw=raw,
            context_path=context_path,
            kind=kind,
            disposition=Disposition.SITE,
            key=_normalize_path(path),
            query=parts.query,
            fragment=parts.fragment,
        )

    def canonicalize(self, raw: str, context_path: str = "/") -> str:
        """Return the canonical key of *raw*, or *raw* itself when it is not a
        navigable same-site reference."""
        ref = self.parse(raw, context_path)
        return ref.key if ref.navigable else raw

    def is_storage_reference(self, raw: str) -> bool:
        return self.parse(raw).disposition is Disposition.STORAGE


def canonicalize(
    reference: str,
    context_path: str = "/",
    *,
    site_host: Optional[str] = None,
    storage_hosts: frozenset[str] = DEFAULT_STORAGE_HOSTS,
) -> str:
    """Module-level shortcut for :meth:`Canonicalizer.canonicalize`."""
    return Canonicalizer(site_host, storage_hosts).canonicalize(reference, context_path)


# ---------------------------------------------------------------------------
# Stored paths
# ---------------------------------------------------------------------------

def weighted_variants(path: str) -> dict[str, int]:
    """Map every key that may address stored *path* to the number of
    transformations it takes to get there (0 for *path* itself)."""
    out: dict[str, int] = {}

    def add(variant: str, cost: int) -> None:
        if variant and (variant not in out or cost < out[variant]):
            out[variant] = cost

    add(path, 0)
    collapsed = _SLASHES.sub("/", path)
    lead_cost = 0 if collapsed.startswith("/") else 1
    base = "/" + collapsed.lstrip("/")

    forms: dict[str, int] = {base: lead_cost}
    for ext in PAGE_EXTENSIONS:
        if base.endswith(ext) and len(base) > len(ext) + 1:
            forms[base[: -len(ext)]] = lead_cost + 1
        if base.endswith("/index" + ext):
            directory = base[: -len("index" + ext)]
            forms[directory] = lead_cost + 1
            if directory != "/":
                forms[directory.rstrip("/")] = lead_cost + 2

    for form, cost in forms.items():
        add(form, cost)
        add(form[1:], cost + 1)
    return out


def variants(path: str) -> set[str]:
    """Every canonical key a reference might use to mean stored *path*."""
    return set(weighted_variants(path))


def url_path_key(url: str) -> str:
    """Canonical key of a URL's path component."""
    return _normalize_path(urlsplit(url).path or "/")


def page_path_for_url(url: str) -> str:
    """Stored path for a page URL.

    Directory-style and extension-less URLs live at ``…/index.html`` so that
    ``/about`` and ``/about/`` share one stored path.
    """
    key = url_path_key(url)
    if key == "/":
        return "/" + INDEX_FILE
    last = key.rsplit("/", 1)[-1]
    if "." in last:
        return key
    return f"{key}/{INDEX_FILE}"


def asset_path_for_url(url: str) -> str:
    """Stored path for an asset URL (its canonical key)."""
    return url_path_key(url)


def normalize_url(url: str) -> str:
    """Normalized absolute URL used for crawl bookkeeping.

    Lower-cases scheme and host, drops default ports and the fragment, and
    collapses repeated slashes.  Query and trailing slash are preserved since
    a server may answer differently for them.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower() or "https"
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        # Out-of-range port is kept as written.
        host = parts.netloc.rpartition("@")[2].lower()
        port = None
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    path = _SLASHES.sub("/", parts.path) or "/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{scheme}://{host}{path}{query}"


def same_host(url: str, other: str) -> bool:
    return (urlsplit(url).hostname or "").lower() == (urlsplit(other).hostname or "").lower()
