"""
GCSBlobStore — Google Cloud Storage blob adapter using google-cloud-storage.

Install extras: pip install "docqueue[gcs]"

Each blob is one GCS object named <prefix><blob id>; the original filename is
kept in the object's custom metadata.

Note: google-cloud-storage is synchronous. All operations are wrapped in
asyncio.to_thread to avoid blocking the event loop.
"""
from __future__ import annotations

import asyncio
import dataclasses
import io
import uuid
from typing import TYPE_CHECKING, Any

from docqueue.domain.errors import BlobNotFoundError, StorageError
from docqueue.ports.blob_store import BlobSource, OpenedBlob, read_source

if TYPE_CHECKING:
    from google.cloud.storage import Client as GCSClient


def _not_found_type() -> type[Exception]:
    try:
        from google.api_core import exceptions as gapi_exc  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "GCSBlobStore requires google-cloud-storage. "
            "Install with: pip install 'docqueue[gcs]'"
        ) from exc
    return gapi_exc.NotFound


@dataclasses.dataclass
class GCSBlobStore:
    """
    Google Cloud Storage blob adapter.

    Parameters
    ----------
    bucket_name : GCS bucket name
    prefix      : object name prefix for every blob (e.g. "queues/my-queue/blobs/")
    client      : google.cloud.storage.Client — created lazily if omitted
    """

    bucket_name: str
    prefix: str = ""
    client: GCSClient | None = None

    def _get_client(self) -> GCSClient:
        if self.client is not None:
            return self.client
        try:
            from google.cloud import storage  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "GCSBlobStore requires google-cloud-storage. "
                "Install with: pip install 'docqueue[gcs]'"
            ) from exc
        return storage.Client()  # type: ignore[return-value]

    def _blob(self, blob_id: str) -> Any:
        client = self._get_client()
        return client.bucket(self.bucket_name).blob(f"{self.prefix}{blob_id}")  # type: ignore[attr-defined]

    async def upload(self, name: str, data: BlobSource) -> str:
        content = await read_source(data)
        try:
            return await asyncio.to_thread(self._sync_upload, name, content)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError("GCS blob upload failed", exc) from exc

    async def open(self, blob_id: str) -> OpenedBlob:
        try:
            name, content = await asyncio.to_thread(self._sync_open, blob_id)
        except (BlobNotFoundError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("GCS blob open failed", exc) from exc
        return OpenedBlob(name=name, stream=io.BytesIO(content))

    async def delete(self, blob_id: str) -> None:
        try:
            await asyncio.to_thread(self._sync_delete, blob_id)
        except (BlobNotFoundError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("GCS blob delete failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    def _sync_upload(self, name: str, content: bytes) -> str:
        blob_id = uuid.uuid4().hex
        blob = self._blob(blob_id)
        blob.metadata = {"filename": name}
        # if_generation_match=0 → the object must not exist yet
        blob.upload_from_string(
            content,
            content_type="application/octet-stream",
            if_generation_match=0,
        )
        return blob_id

    def _sync_open(self, blob_id: str) -> tuple[str, bytes]:
        not_found = _not_found_type()
        blob = self._blob(blob_id)
        try:
            blob.reload()
            content: bytes = blob.download_as_bytes()
        except not_found as exc:
            raise BlobNotFoundError(blob_id) from exc
        metadata = blob.metadata or {}
        return metadata.get("filename", blob_id), content

    def _sync_delete(self, blob_id: str) -> None:
        not_found = _not_found_type()
        try:
            self._blob(blob_id).delete()
        except not_found as exc:
            raise BlobNotFoundError(blob_id) from exc
