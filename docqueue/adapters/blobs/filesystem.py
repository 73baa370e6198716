"""
LocalFileBlobStore — one directory per blob under a root directory.

Layout
------
    <root>/<blob id>/<quoted filename>

The directory name is the blob id. The single file inside is named by the
URL-quoted original filename, so slashes and dot names stay inside the blob
directory and open() recovers the exact name without any side index.

Blocking file I/O runs in asyncio.to_thread to keep the event loop free.
open() returns a real file object; the caller must close it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote, unquote

from docqueue.domain.errors import BlobNotFoundError, InvalidArgumentError, StorageError
from docqueue.ports.blob_store import BlobSource, OpenedBlob, read_source


def _quote_name(name: str) -> str:
    # quote() leaves dots alone, and "." or ".." would name a directory.
    quoted = quote(name, safe="")
    return quoted.replace(".", "%2E") if quoted in (".", "..") else quoted


@dataclasses.dataclass
class LocalFileBlobStore:
    """
    Stores blobs as files under `root`.

    Parameters
    ----------
    root : directory holding one sub-directory per blob (created if absent)
    """

    root: Path

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    async def upload(self, name: str, data: BlobSource) -> str:
        if not name:
            raise InvalidArgumentError("blob name must not be empty")
        filename = _quote_name(name)
        content = await read_source(data)
        try:
            return await asyncio.to_thread(self._sync_upload, filename, content)
        except OSError as exc:
            raise StorageError("blob upload failed", exc) from exc

    async def open(self, blob_id: str) -> OpenedBlob:
        try:
            name, stream = await asyncio.to_thread(self._sync_open, blob_id)
        except OSError as exc:
            raise StorageError("blob open failed", exc) from exc
        return OpenedBlob(name=name, stream=stream)

    async def delete(self, blob_id: str) -> None:
        try:
            await asyncio.to_thread(self._sync_delete, blob_id)
        except OSError as exc:
            raise StorageError("blob delete failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    def _blob_dir(self, blob_id: str) -> Path:
        if not blob_id or Path(blob_id).name != blob_id:
            raise BlobNotFoundError(blob_id)
        return self.root / blob_id

    def _sync_upload(self, filename: str, content: bytes) -> str:
        blob_id = uuid.uuid4().hex
        directory = self.root / blob_id
        directory.mkdir(parents=True)
        (directory / filename).write_bytes(content)
        return blob_id

    def _sync_open(self, blob_id: str) -> tuple[str, BinaryIO]:
        directory = self._blob_dir(blob_id)
        if not directory.is_dir():
            raise BlobNotFoundError(blob_id)
        files = [p for p in directory.iterdir() if p.is_file()]
        if not files:
            raise BlobNotFoundError(blob_id)
        return unquote(files[0].name), open(files[0], "rb")

    def _sync_delete(self, blob_id: str) -> None:
        directory = self._blob_dir(blob_id)
        if not directory.is_dir():
            raise BlobNotFoundError(blob_id)
        shutil.rmtree(directory)
