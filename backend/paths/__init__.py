"""Path canonicalization: references, canonical keys, and stored-path variants."""

from backend.paths.canonical import (
    Canonicalizer,
    Disposition,
    Reference,
    ReferenceKind,
    asset_path_for_url,
    canonicalize,
    normalize_url,
    page_path_for_url,
    variants,
)
from backend.paths.index import PathIndex

__all__ = [
    "Canonicalizer",
    "Disposition",
    "PathIndex",
    "Reference",
    "ReferenceKind",
    "asset_path_for_url",
    "canonicalize",
    "normalize_url",
    "page_path_for_url",
    "variants",
]
