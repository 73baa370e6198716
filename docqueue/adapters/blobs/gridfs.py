"""
GridFSBlobStore — MongoDB GridFS blob adapter using pymongo's asyncio API.

Install extras: pip install "docqueue[mongo]"

The natural companion of MongoDocumentStore: blobs live in the same database
as the queue collection. GridFS stores the original filename itself, so no
extra metadata is needed. Blob ids are the stringified ObjectIds GridFS
assigns.
"""
from __future__ import annotations

import dataclasses
import io
from typing import TYPE_CHECKING, Any

from docqueue.domain.errors import BlobNotFoundError, StorageError
from docqueue.domain.models import MongoSettings
from docqueue.ports.blob_store import BlobSource, OpenedBlob, read_source

if TYPE_CHECKING:
    from gridfs import AsyncGridFSBucket


def _import_gridfs() -> tuple[Any, Any]:
    try:
        import gridfs
        from bson import ObjectId
    except ImportError as exc:
        raise ImportError(
            "GridFSBlobStore requires pymongo. "
            "Install with: pip install 'docqueue[mongo]'"
        ) from exc
    return gridfs, ObjectId


@dataclasses.dataclass
class GridFSBlobStore:
    """
    GridFS blob adapter.

    Parameters
    ----------
    bucket : gridfs.AsyncGridFSBucket over the queue's database
    """

    bucket: AsyncGridFSBucket

    @classmethod
    def from_settings(cls, settings: MongoSettings) -> "GridFSBlobStore":
        """Open an AsyncMongoClient for `settings` and bind a GridFS bucket."""
        gridfs, _ = _import_gridfs()
        import pymongo

        client = pymongo.AsyncMongoClient(settings.url, tz_aware=True)
        database = client[settings.database]
        return cls(
            bucket=gridfs.AsyncGridFSBucket(database, bucket_name=settings.gridfs_bucket)
        )

    def _object_id(self, blob_id: str) -> Any:
        _, object_id = _import_gridfs()
        try:
            return object_id(blob_id)
        except Exception as exc:
            raise BlobNotFoundError(blob_id) from exc

    async def upload(self, name: str, data: BlobSource) -> str:
        content = await read_source(data)
        try:
            file_id = await self.bucket.upload_from_stream(name, content)
        except Exception as exc:
            raise StorageError("GridFS upload failed", exc) from exc
        return str(file_id)

    async def open(self, blob_id: str) -> OpenedBlob:
        gridfs, _ = _import_gridfs()
        file_id = self._object_id(blob_id)
        try:
            grid_out = await self.bucket.open_download_stream(file_id)
            content: bytes = await grid_out.read()
        except gridfs.errors.NoFile as exc:
            raise BlobNotFoundError(blob_id) from exc
        except Exception as exc:
            raise StorageError("GridFS open failed", exc) from exc
        return OpenedBlob(name=grid_out.filename, stream=io.BytesIO(content))

    async def delete(self, blob_id: str) -> None:
        gridfs, _ = _import_gridfs()
        file_id = self._object_id(blob_id)
        try:
            await self.bucket.delete(file_id)
        except gridfs.errors.NoFile as exc:
            raise BlobNotFoundError(blob_id) from exc
        except Exception as exc:
            raise StorageError("GridFS delete failed", exc) from exc
