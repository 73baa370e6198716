from unittest.mock import MagicMock

import pytest

from docqueue.adapters.blobs.gcs import GCSBlobStore
from docqueue.domain.errors import BlobNotFoundError, StorageError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_store() -> tuple[GCSBlobStore, MagicMock]:
    client = MagicMock()
    store = GCSBlobStore(bucket_name="my-bucket", prefix="blobs/", client=client)
    return store, client


def _gcs_blob(client: MagicMock) -> MagicMock:
    return client.bucket.return_value.blob.return_value


# ---------------------------------------------------------------------------
# upload()
# ---------------------------------------------------------------------------


async def test_upload_sets_metadata_and_requires_new_object():
    store, client = _make_store()
    blob_id = await store.upload("report.csv", b"1,2")

    client.bucket.assert_called_with("my-bucket")
    client.bucket.return_value.blob.assert_called_with(f"blobs/{blob_id}")
    blob = _gcs_blob(client)
    assert blob.metadata == {"filename": "report.csv"}
    blob.upload_from_string.assert_called_once_with(
        b"1,2", content_type="application/octet-stream", if_generation_match=0
    )


async def test_upload_error_raises_storage_error():
    store, client = _make_store()
    _gcs_blob(client).upload_from_string.side_effect = RuntimeError("quota")
    with pytest.raises(StorageError):
        await store.upload("a", b"x")


# ---------------------------------------------------------------------------
# open() / delete()
# ---------------------------------------------------------------------------


async def test_open_delegates_to_sync_open(monkeypatch):
    store, _ = _make_store()
    monkeypatch.setattr(store, "_sync_open", lambda blob_id: ("a.txt", b"alpha"))
    opened = await store.open("abc")
    assert opened.name == "a.txt"
    assert opened.stream.read() == b"alpha"


async def test_open_other_error_raises_storage_error(monkeypatch):
    store, _ = _make_store()

    def broken(blob_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store, "_sync_open", broken)
    with pytest.raises(StorageError):
        await store.open("abc")


async def test_delete_not_found_passes_through(monkeypatch):
    store, _ = _make_store()

    def missing(blob_id):
        raise BlobNotFoundError(blob_id)

    monkeypatch.setattr(store, "_sync_delete", missing)
    with pytest.raises(BlobNotFoundError):
        await store.delete("abc")


async def test_open_reads_metadata_and_content():
    pytest.importorskip("google.api_core")
    store, client = _make_store()
    blob = _gcs_blob(client)
    blob.metadata = {"filename": "a.txt"}
    blob.download_as_bytes.return_value = b"alpha"

    opened = await store.open("abc")

    blob.reload.assert_called_once()
    assert opened.name == "a.txt"
    assert opened.stream.read() == b"alpha"


async def test_open_missing_raises_not_found():
    api_exceptions = pytest.importorskip("google.api_core.exceptions")
    store, client = _make_store()
    _gcs_blob(client).reload.side_effect = api_exceptions.NotFound("gone")
    with pytest.raises(BlobNotFoundError):
        await store.open("abc")


async def test_delete_missing_raises_not_found():
    api_exceptions = pytest.importorskip("google.api_core.exceptions")
    store, client = _make_store()
    _gcs_blob(client).delete.side_effect = api_exceptions.NotFound("gone")
    with pytest.raises(BlobNotFoundError):
        await store.delete("abc")


async def test_delete_calls_blob_delete():
    pytest.importorskip("google.api_core")
    store, client = _make_store()
    await store.delete("abc")
    _gcs_blob(client).delete.assert_called_once()
