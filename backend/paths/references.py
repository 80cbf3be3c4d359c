"""Locate references inside CSS text, ``srcset`` values and script bodies.

Each scanner yields :class:`Span` objects pointing at the reference value
itself (quotes and ``url(…)`` wrappers excluded), so callers can either
collect the values (discovery) or splice replacements in (rewriting) with
:func:`substitute`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

from backend.paths.canonical import ReferenceKind

CSS_IMPORT_RE = re.compile(
    r"""@import\s+(?:url\(\s*(?P<iq>["']?)(?P<iurl>[^"')]+?)(?P=iq)\s*\)"""
    r"""|(?P<sq>["'])(?P<istr>[^"']+)(?P=sq))""",
    re.IGNORECASE,
)
CSS_URL_RE = re.compile(r"""url\(\s*(?P<q>["']?)(?P<url>[^"')]+?)(?P=q)\s*\)""", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")
SCRIPT_IMPORT_RE = re.compile(r"""\bimport\s*\(\s*(?P<q>["'`])(?P<spec>[^"'`]+)(?P=q)\s*\)""")
# A quoted string that looks like a file path: ends in a short extension.
JSON_PATH_RE = re.compile(r'"(?P<path>[^"\s\\]*\.[A-Za-z0-9]{1,5})"')


@dataclass(frozen=True)
class Span:
    start: int
    end: int
    value: str
    kind: ReferenceKind


def iter_css_references(css: str) -> Iterator[Span]:
    """Yield ``@import`` targets and ``url()`` values in document order."""
    import_ranges: list[tuple[int, int]] = []
    spans: list[Span] = []
    for m in CSS_IMPORT_RE.finditer(css):
        group = "iurl" if m.group("iurl") is not None else "istr"
        start, end = m.span(group)
        spans.append(Span(start, end, m.group(group), ReferenceKind.CSS_IMPORT))
        import_ranges.append(m.span())
    for m in CSS_URL_RE.finditer(css):
        if any(lo <= m.start() < hi for lo, hi in import_ranges):
            continue
        start, end = m.span("url")
        spans.append(Span(start, end, m.group("url"), ReferenceKind.CSS_URL))
    yield from sorted(spans, key=lambda s: s.start)


def iter_script_references(script: str) -> Iterator[Span]:
    """Yield dynamic ``import("…")`` specifiers and JSON-style path strings."""
    taken: list[tuple[int, int]] = []
    spans: list[Span] = []
    for m in SCRIPT_IMPORT_RE.finditer(script):
        start, end = m.span("spec")
        spans.append(Span(start, end, m.group("spec"), ReferenceKind.SCRIPT_IMPORT))
        taken.append((start, end))
    for m in JSON_PATH_RE.finditer(script):
        start, end = m.span("path")
        if any(lo <= start < hi for lo, hi in taken):
            continue
        spans.append(Span(start, end, m.group("path"), ReferenceKind.JSON_PATH))
    yield from sorted(spans, key=lambda s: s.start)


def parse_srcset(value: str) -> list[tuple[str, str]]:
    """Split a ``srcset`` value into ``(url, descriptor)`` pairs."""
    candidates: list[tuple[str, str]] = []
    for candidate in SRCSET_SPLIT_RE.split(value.strip()):
        if not candidate:
            continue
        parts = WS_RE.split(candidate.strip())
        candidates.append((parts[0], " ".join(parts[1:])))
    return candidates


def format_srcset(candidates: Iterable[tuple[str, str]]) -> str:
    return ", ".join(f"{url} {desc}".strip() for url, desc in candidates if url)


def substitute(
    text: str,
    spans: Iterable[Span],
    replace: Callable[[Span], Optional[str]],
) -> str:
    """Return *text* with each span replaced by ``replace(span)``.

    Spans for which ``replace`` returns ``None`` are left as they are.
    """
    out: list[str] = []
    cursor = 0
    for span in spans:
        new_value = replace(span)
        if new_value is None or span.start < cursor:
            continue
        out.append(text[cursor:span.start])
        out.append(new_value)
        cursor = span.end
    out.append(text[cursor:])
    return "".join(out)
