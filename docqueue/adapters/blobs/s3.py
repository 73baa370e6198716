"""
S3BlobStore — AWS S3 blob adapter using aioboto3.

Install extras: pip install "docqueue[s3]"

Each blob is one object under `prefix` with a random key. The original
filename travels in the object's user metadata (URL-quoted, since S3
metadata must be ASCII):

  upload() → PutObject   Key=<prefix><blob id>, Metadata={"filename": ...}
  open()   → GetObject   body read into memory, returned as BytesIO
  delete() → HeadObject (to report unknown ids) + DeleteObject

Compatible with S3-compatible storage: MinIO, Cloudflare R2, Tigris, etc.
"""
from __future__ import annotations

import dataclasses
import io
import uuid
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from docqueue.domain.errors import BlobNotFoundError, StorageError
from docqueue.ports.blob_store import BlobSource, OpenedBlob, read_source

if TYPE_CHECKING:
    from aioboto3 import Session as AioBoto3Session

_NOT_FOUND = ("NoSuchKey", "404", "NotFound")


@dataclasses.dataclass
class S3BlobStore:
    """
    AWS S3 blob adapter.

    Parameters
    ----------
    bucket       : S3 bucket name
    prefix       : key prefix for every blob (e.g. "queues/my-queue/blobs/")
    session      : aioboto3.Session — created lazily from env vars if omitted
    region_name  : AWS region passed to the S3 client
    endpoint_url : custom endpoint for S3-compatible backends (e.g. MinIO)
    """

    bucket: str
    prefix: str = ""
    session: AioBoto3Session | None = None
    region_name: str | None = None
    endpoint_url: str | None = None

    def _get_session(self) -> AioBoto3Session:
        if self.session is not None:
            return self.session
        try:
            import aioboto3  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "S3BlobStore requires aioboto3. Install with: pip install 'docqueue[s3]'"
            ) from exc
        return aioboto3.Session()  # type: ignore[return-value]

    def _client_kwargs(self) -> dict[str, str]:
        """Build kwargs forwarded to the S3 client constructor."""
        kwargs: dict[str, str] = {}
        if self.region_name:
            kwargs["region_name"] = self.region_name
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    def _key(self, blob_id: str) -> str:
        return f"{self.prefix}{blob_id}"

    async def upload(self, name: str, data: BlobSource) -> str:
        blob_id = uuid.uuid4().hex
        content = await read_source(data)
        session = self._get_session()
        try:
            async with session.client("s3", **self._client_kwargs()) as s3:  # type: ignore[attr-defined]
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=self._key(blob_id),
                    Body=content,
                    ContentType="application/octet-stream",
                    Metadata={"filename": quote(name)},
                )
        except Exception as exc:
            raise StorageError("S3 blob upload failed", exc) from exc
        return blob_id

    async def open(self, blob_id: str) -> OpenedBlob:
        session = self._get_session()
        try:
            async with session.client("s3", **self._client_kwargs()) as s3:  # type: ignore[attr-defined]
                try:
                    response = await s3.get_object(
                        Bucket=self.bucket, Key=self._key(blob_id)
                    )
                except Exception as exc:
                    if _s3_error_code(exc) in _NOT_FOUND:
                        raise BlobNotFoundError(blob_id) from exc
                    raise
                content: bytes = await response["Body"].read()
                metadata = response.get("Metadata") or {}
        except (BlobNotFoundError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("S3 blob open failed", exc) from exc
        name = unquote(metadata.get("filename", blob_id))
        return OpenedBlob(name=name, stream=io.BytesIO(content))

    async def delete(self, blob_id: str) -> None:
        session = self._get_session()
        try:
            async with session.client("s3", **self._client_kwargs()) as s3:  # type: ignore[attr-defined]
                # DeleteObject succeeds for absent keys; HEAD first to report them.
                try:
                    await s3.head_object(Bucket=self.bucket, Key=self._key(blob_id))
                except Exception as exc:
                    if _s3_error_code(exc) in _NOT_FOUND:
                        raise BlobNotFoundError(blob_id) from exc
                    raise
                await s3.delete_object(Bucket=self.bucket, Key=self._key(blob_id))
        except (BlobNotFoundError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("S3 blob delete failed", exc) from exc


def _s3_error_code(exc: Exception) -> str:
    """Extract the error code from a botocore ClientError, or return ''."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error", {})
        if isinstance(error, dict):
            code = error.get("Code", "")
            return str(code) if code else ""
    return ""
