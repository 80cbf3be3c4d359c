"""Publisher package: storage clients, the identifier map, and the three-pass upload."""

from backend.publish.pathmap import PathIdentifierMap
from backend.publish.publisher import PublishOptions, Publisher, PublishResult, publish
from backend.publish.rewriter import Rewriter
from backend.publish.storage import (
    DryRunStorageClient,
    HttpStorageClient,
    StorageClient,
    make_storage_client,
)

__all__ = [
    "publish",
    "Publisher",
    "PublishOptions",
    "PublishResult",
    "PathIdentifierMap",
    "Rewriter",
    "StorageClient",
    "HttpStorageClient",
    "DryRunStorageClient",
    "make_storage_client",
]
