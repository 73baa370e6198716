"""
BlobStorePort — out-of-band storage for large entry attachments.

Blobs are immutable: they are uploaded once, opened any number of times and
deleted when the entry that references them is acknowledged or replaced.
Blob ids are opaque strings chosen by the adapter.

open() hands ownership of the returned stream to the caller, who must close
it. The queue closes every stream it opened on ack / ack_send / requeue.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import BinaryIO, Protocol, runtime_checkable

BlobSource = bytes | BinaryIO


@dataclasses.dataclass
class OpenedBlob:
    """A blob opened for reading: its original filename and a binary stream."""

    name: str
    stream: BinaryIO


async def read_source(source: BlobSource) -> bytes:
    """Return the full contents of an upload source. File reads run in a worker thread."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    return await asyncio.to_thread(source.read)


@runtime_checkable
class BlobStorePort(Protocol):
    """
    Three async methods: upload, open, delete.

    Implementing adapters (built-in):
      - InMemoryBlobStore   — dict-backed, for testing
      - LocalFileBlobStore  — one directory per blob
      - S3BlobStore         — aioboto3, filename kept in object metadata
      - GCSBlobStore        — google-cloud-storage, filename kept in blob metadata
      - GridFSBlobStore     — MongoDB GridFS via pymongo's async client
    """

    async def upload(self, name: str, data: BlobSource) -> str:
        """Store `data` under the original filename `name`. Returns the blob id."""
        ...

    async def open(self, blob_id: str) -> OpenedBlob:
        """
        Open a blob for reading.

        Raises
        ------
        BlobNotFoundError  if blob_id is unknown
        StorageError       for any other I/O failure
        """
        ...

    async def delete(self, blob_id: str) -> None:
        """
        Delete a blob.

        Raises
        ------
        BlobNotFoundError  if blob_id is unknown
        StorageError       for any other I/O failure
        """
        ...
