"""Manifest builder."""

from backend.manifest.builder import MANIFEST_CONTENT_TYPE, Manifest, build_manifest

__all__ = ["MANIFEST_CONTENT_TYPE", "Manifest", "build_manifest"]
