"""
InMemoryBlobStore — dict-backed blob store for testing and development.

Blob ids are random hex strings. open() returns a fresh BytesIO over the
stored bytes each time, so several readers never share a position.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
import io
import uuid

from docqueue.domain.errors import BlobNotFoundError
from docqueue.ports.blob_store import BlobSource, OpenedBlob, read_source


@dataclasses.dataclass
class InMemoryBlobStore:
    """In-process blob storage: blob id → (filename, bytes)."""

    def __post_init__(self) -> None:
        self._blobs: dict[str, tuple[str, bytes]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._blobs)

    def __contains__(self, blob_id: object) -> bool:
        return blob_id in self._blobs

    async def upload(self, name: str, data: BlobSource) -> str:
        content = await read_source(data)
        async with self._lock:
            blob_id = uuid.uuid4().hex
            self._blobs[blob_id] = (name, content)
            return blob_id

    async def open(self, blob_id: str) -> OpenedBlob:
        async with self._lock:
            try:
                name, content = self._blobs[blob_id]
            except KeyError:
                raise BlobNotFoundError(blob_id) from None
        return OpenedBlob(name=name, stream=io.BytesIO(content))

    async def delete(self, blob_id: str) -> None:
        async with self._lock:
            if self._blobs.pop(blob_id, None) is None:
                raise BlobNotFoundError(blob_id)
