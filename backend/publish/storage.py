"""Clients for the immutable storage network.

The network exposes two operations: ``put`` bytes (returns a new permanent
identifier) and ``get`` bytes by identifier.  There is no update and no
delete.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import httpx

from backend.config import settings
from backend.errors import FetchFailure, RetryableUploadError, UploadFailure

logger = logging.getLogger(__name__)

TAGS_HEADER = "X-Tags"


class StorageClient(ABC):
    """Write-once object store addressed by identifier."""

    gateway_url: str = "https://arweave.net"

    @abstractmethod
    def put(self, data: bytes, content_type: str, tags: Mapping[str, str]) -> str:
        """Store *data* and return its permanent identifier.

        Raises:
            RetryableUploadError: Rate limited, server error or transport error.
            UploadFailure: The write was rejected.
        """

    @abstractmethod
    def get(self, identifier: str) -> bytes:
        """Return the bytes stored under *identifier*."""

    def url_for(self, identifier: str) -> str:
        return f"{self.gateway_url.rstrip('/')}/{identifier}"

    def close(self) -> None:
        """Release network resources; idempotent."""


def encode_tags(tags: Mapping[str, str]) -> str:
    """Serialise tags as the ``[{"name": …, "value": …}]`` list the network indexes."""
    return json.dumps([{"name": k, "value": str(v)} for k, v in tags.items()])


# ---------------------------------------------------------------------------
# HTTP upload service
# ---------------------------------------------------------------------------

class HttpStorageClient(StorageClient):
    """Uploads through an HTTP bundling service and reads through a gateway.

    ``POST {upload_url}`` with the raw bytes as the body, the content type as
    ``Content-Type`` and the tags JSON-encoded in ``X-Tags``; the service
    answers ``{"id": "<identifier>"}``.
    """

    def __init__(
        self,
        upload_url: Optional[str] = None,
        gateway_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.upload_url = upload_url or settings.upload_url
        self.gateway_url = gateway_url or settings.gateway_url
        self.api_key = api_key if api_key is not None else settings.storage_api_key
        self.timeout = timeout or settings.upload_timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)

    def _headers(self, content_type: str, tags: Mapping[str, str]) -> dict[str, str]:
        headers = {"Content-Type": content_type, TAGS_HEADER: encode_tags(tags)}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def put(self, data: bytes, content_type: str, tags: Mapping[str, str]) -> str:
        try:
            response = self._client.post(
                self.upload_url,
                content=data,
                headers=self._headers(content_type, tags),
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            raise RetryableUploadError(f"transport error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableUploadError(f"upload service answered HTTP {response.status_code}")
        if response.status_code >= 400:
            raise UploadFailure(
                f"upload rejected with HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            identifier = response.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UploadFailure(f"upload service returned no identifier: {response.text[:200]}") from exc
        return str(identifier)

    def get(self, identifier: str) -> bytes:
        url = self.url_for(identifier)
        try:
            response = self._client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchFailure(url, str(exc)) from exc
        return response.content

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


# ---------------------------------------------------------------------------
# In-memory dry run
# ---------------------------------------------------------------------------

@dataclass
class StoredObject:
    identifier: str
    data: bytes
    content_type: str
    tags: dict[str, str]


class DryRunStorageClient(StorageClient):
    """Keeps objects in memory; identifiers are the unpadded base64url SHA-256
    of the bytes (43 characters, the same shape as a network identifier)."""

    def __init__(self, gateway_url: Optional[str] = None) -> None:
        self.gateway_url = gateway_url or settings.gateway_url
        self.objects: dict[str, StoredObject] = {}
        # Every put in call order, including repeated writes of equal bytes.
        self.uploads: list[StoredObject] = []
        self._lock = threading.Lock()

    @staticmethod
    def identifier_for(data: bytes) -> str:
        digest = hashlib.sha256(data).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def put(self, data: bytes, content_type: str, tags: Mapping[str, str]) -> str:
        identifier = self.identifier_for(data)
        obj = StoredObject(identifier, bytes(data), content_type, dict(tags))
        with self._lock:
            self.objects[identifier] = obj
            self.uploads.append(obj)
        return identifier

    def get(self, identifier: str) -> bytes:
        try:
            return self.objects[identifier].data
        except KeyError:
            raise FetchFailure(self.url_for(identifier), "no such object") from None

    def uploads_for(self, path: str) -> list[StoredObject]:
        """Every upload tagged with logical *path*, oldest first."""
        return [o for o in self.uploads if o.tags.get("Path") == path]


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

def load_wallet(path: Path | str) -> dict[str, Any]:
    """Read a JSON wallet file.

    Raises:
        ValueError: The file is missing or is not a JSON object.
    """
    wallet_path = Path(path).expanduser()
    try:
        wallet = json.loads(wallet_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ValueError(f"wallet file not found: {wallet_path}") from None
    except json.JSONDecodeError as exc:
        raise ValueError(f"wallet file is not valid JSON: {exc}") from exc
    if not isinstance(wallet, dict):
        raise ValueError("wallet file must contain a JSON object")
    return wallet


def make_storage_client(
    wallet: Optional[Path | str] = None,
    dry_run: bool = False,
) -> StorageClient:
    """Build the storage client for a publish run.

    The upload service authenticates with the wallet's ``api_key`` field,
    falling back to ``settings.storage_api_key``.
    """
    if dry_run:
        logger.info("Dry run: uploads stay in memory")
        return DryRunStorageClient()
    api_key = None
    if wallet is not None:
        api_key = load_wallet(wallet).get("api_key")
    return HttpStorageClient(api_key=api_key)
