"""Tests for the storage clients.

The HTTP client is exercised against ``respx`` routes standing in for the
upload service and the gateway.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from backend.errors import FetchFailure, RetryableUploadError, UploadFailure
from backend.publish.storage import (
    DryRunStorageClient,
    HttpStorageClient,
    encode_tags,
    load_wallet,
    make_storage_client,
)

UPLOAD = "https://upload.test/v1/tx"
GATEWAY = "https://gateway.test"


@pytest.fixture()
def storage():
    client = HttpStorageClient(upload_url=UPLOAD, gateway_url=GATEWAY, api_key="secret")
    yield client
    client.close()


class TestHttpStorageClient:
    def test_put_sends_body_type_tags_and_key(self, storage) -> None:
        with respx.mock:
            route = respx.post(UPLOAD).mock(
                return_value=httpx.Response(200, json={"id": "abc123"})
            )
            identifier = storage.put(b"<html/>", "text/html", {"Path": "/index.html"})

        assert identifier == "abc123"
        request = route.calls.last.request
        assert request.content == b"<html/>"
        assert request.headers["content-type"] == "text/html"
        assert request.headers["authorization"] == "Bearer secret"
        assert json.loads(request.headers["x-tags"]) == [{"name": "Path", "value": "/index.html"}]

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_statuses_are_retryable(self, storage, status: int) -> None:
        with respx.mock:
            respx.post(UPLOAD).mock(return_value=httpx.Response(status))
            with pytest.raises(RetryableUploadError):
                storage.put(b"x", "text/plain", {})

    def test_transport_error_is_retryable(self, storage) -> None:
        with respx.mock:
            respx.post(UPLOAD).mock(side_effect=httpx.ConnectTimeout("slow"))
            with pytest.raises(RetryableUploadError):
                storage.put(b"x", "text/plain", {})

    def test_client_error_is_permanent(self, storage) -> None:
        with respx.mock:
            respx.post(UPLOAD).mock(return_value=httpx.Response(400, text="bad tags"))
            with pytest.raises(UploadFailure) as info:
                storage.put(b"x", "text/plain", {})
        assert not isinstance(info.value, RetryableUploadError)

    def test_missing_identifier(self, storage) -> None:
        with respx.mock:
            respx.post(UPLOAD).mock(return_value=httpx.Response(200, json={"ok": True}))
            with pytest.raises(UploadFailure):
                storage.put(b"x", "text/plain", {})

    def test_get_reads_through_gateway(self, storage) -> None:
        with respx.mock:
            respx.get(f"{GATEWAY}/abc123").mock(return_value=httpx.Response(200, content=b"data"))
            respx.get(f"{GATEWAY}/missing").mock(return_value=httpx.Response(404))
            assert storage.get("abc123") == b"data"
            with pytest.raises(FetchFailure):
                storage.get("missing")

    def test_url_for(self, storage) -> None:
        assert storage.url_for("abc") == "https://gateway.test/abc"


class TestDryRunStorageClient:
    def test_identifier_is_content_hash(self) -> None:
        client = DryRunStorageClient(GATEWAY)
        first = client.put(b"same", "text/plain", {"Path": "/a.txt"})
        second = client.put(b"same", "text/plain", {"Path": "/b.txt"})
        assert first == second
        assert len(first) == 43
        assert "=" not in first
        assert len(client.uploads) == 2
        assert client.get(first) == b"same"

    def test_uploads_for_path(self) -> None:
        client = DryRunStorageClient(GATEWAY)
        client.put(b"1", "text/html", {"Path": "/index.html"})
        client.put(b"2", "text/html", {"Path": "/index.html"})
        client.put(b"3", "text/css", {"Path": "/s.css"})
        assert [o.data for o in client.uploads_for("/index.html")] == [b"1", b"2"]

    def test_unknown_identifier(self) -> None:
        with pytest.raises(FetchFailure):
            DryRunStorageClient(GATEWAY).get("nope")


class TestWallet:
    def test_load_wallet(self, tmp_path) -> None:
        path = tmp_path / "wallet.json"
        path.write_text(json.dumps({"api_key": "k"}))
        assert load_wallet(path) == {"api_key": "k"}

    @pytest.mark.parametrize("content", ["not json", "[1, 2]"])
    def test_invalid_wallet(self, tmp_path, content: str) -> None:
        path = tmp_path / "wallet.json"
        path.write_text(content)
        with pytest.raises(ValueError):
            load_wallet(path)

    def test_missing_wallet(self, tmp_path) -> None:
        with pytest.raises(ValueError):
            load_wallet(tmp_path / "absent.json")

    def test_make_storage_client(self, tmp_path) -> None:
        path = tmp_path / "wallet.json"
        path.write_text(json.dumps({"api_key": "from-wallet"}))
        assert isinstance(make_storage_client(dry_run=True), DryRunStorageClient)
        client = make_storage_client(path)
        try:
            assert isinstance(client, HttpStorageClient)
            assert client.api_key == "from-wallet"
        finally:
            client.close()


def test_encode_tags_stringifies_values() -> None:
    assert json.loads(encode_tags({"Publish-Round": 2})) == [
        {"name": "Publish-Round", "value": "2"}
    ]
