"""
LocalFileDocumentStore — one JSON file per collection, compare-and-set writes.

Suitable for local development, single-machine deployments, or integration
tests that need a persistent collection rather than an in-memory one.

The file offers no native "find one and update" primitive, so every mutation
runs an explicit CAS loop:

  1. read the snapshot and its etag (shared flock)
  2. apply the operation to an in-memory DocumentCollection
  3. write back under an exclusive flock, only if the etag is unchanged
  4. on CASConflictError, back off and start again from 1

Two processes racing to claim the same entry both compute a claim, but only
the first write lands; the loser re-reads, sees the entry running and claims
the next one. At-most-one-claimant therefore holds across processes.

Etag strategy
-------------
The etag is a SHA-256 hex digest of the file contents. A file that is absent
or empty is treated as an empty collection; its etag is None.

POSIX-only (Linux, macOS). Not compatible with NFS or distributed filesystems.
"""

from __future__ import annotations

import asyncio
import dataclasses
import fcntl
import hashlib
import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar

from docqueue.adapters.documents.collection import (
    MAX_INDEX_NAME_LENGTH,
    DocumentCollection,
)
from docqueue.core import codec
from docqueue.domain.errors import CASConflictError
from docqueue.ports.document_store import Filter, IndexInfo, IndexKeys, Sort, Update

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclasses.dataclass
class LocalFileDocumentStore:
    """
    Stores the collection in a local JSON file.

    Parameters
    ----------
    path                  : path to the collection file (parent created if absent)
    max_retries           : CAS attempts per operation before CASConflictError escapes
    max_index_name_length : longest index name create_index() accepts
    """

    path: Path
    max_retries: int = 20
    max_index_name_length: int = MAX_INDEX_NAME_LENGTH

    def __init__(
        self,
        path: str | Path,
        max_retries: int = 20,
        max_index_name_length: int = MAX_INDEX_NAME_LENGTH,
    ) -> None:
        self.path = Path(path)
        self.max_retries = max_retries
        self.max_index_name_length = max_index_name_length

    # ------------------------------------------------------------------ #
    # DocumentStorePort                                                   #
    # ------------------------------------------------------------------ #

    async def insert(self, document: Mapping[str, Any]) -> Any:
        return await self._mutate(lambda c: c.insert(document))

    async def find_one_and_update(
        self,
        filter: Filter,
        sort: Sort,
        update: Update,
    ) -> dict[str, Any] | None:
        return await self._mutate(lambda c: c.find_one_and_update(filter, sort, update))

    async def update_many(self, filter: Filter, update: Update) -> int:
        return await self._mutate(lambda c: c.update_many(filter, update))

    async def upsert_by_id(
        self,
        id: Any,
        update: Update,
        on_insert: Update | None = None,
    ) -> None:
        await self._mutate(lambda c: c.upsert_by_id(id, update, on_insert))

    async def remove_many(self, filter: Filter) -> int:
        return await self._mutate(lambda c: c.remove_many(filter))

    async def count(self, filter: Filter) -> int:
        collection, _ = await asyncio.to_thread(self._sync_read)
        return collection.count(filter)

    async def list_indexes(self) -> list[IndexInfo]:
        collection, _ = await asyncio.to_thread(self._sync_read)
        return collection.list_indexes()

    async def create_index(self, keys: IndexKeys, name: str) -> None:
        await self._mutate(lambda c: c.create_index(keys, name))

    async def find(self, filter: Filter) -> list[dict[str, Any]]:
        """Copies of matching documents (for inspection in tests and tools)."""
        collection, _ = await asyncio.to_thread(self._sync_read)
        return collection.find(filter)

    # ------------------------------------------------------------------ #
    # Internal CAS loop                                                   #
    # ------------------------------------------------------------------ #

    async def _mutate(self, fn: Callable[[DocumentCollection], T]) -> T:
        """
        Read-modify-write with CAS retry loop.

        fn(collection) mutates in place and returns the operation's result.
        Retries up to self.max_retries on CASConflictError.
        """
        for attempt in range(self.max_retries):
            collection, etag = await asyncio.to_thread(self._sync_read)
            result = fn(collection)
            content = codec.dumps(collection.to_snapshot())
            try:
                await asyncio.to_thread(self._sync_write, content, etag)
                return result
            except CASConflictError:
                if attempt == self.max_retries - 1:
                    logger.warning(
                        "Giving up on %s after %d CAS conflicts", self.path, attempt + 1
                    )
                    raise
                await asyncio.sleep(0.01 * (attempt + 1))
        raise CASConflictError(f"No CAS attempts allowed for {self.path}")

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _etag(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def _sync_read(self) -> tuple[DocumentCollection, str | None]:
        if not self.path.exists():
            return DocumentCollection(max_index_name_length=self.max_index_name_length), None
        with open(self.path, "rb") as fh:
            fcntl.flock(fh, fcntl.LOCK_SH)
            try:
                content = fh.read()
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
        etag: str | None = self._etag(content) if content else None
        snapshot = codec.loads(content) if content else None
        return (
            DocumentCollection.from_snapshot(snapshot, self.max_index_name_length),
            etag,
        )

    def _sync_write(self, content: bytes, if_match: str | None) -> str:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)

            existing = os.read(fd, os.fstat(fd).st_size)
            real_etag: str | None = self._etag(existing) if existing else None

            if real_etag != if_match:
                raise CASConflictError(
                    f"ETag mismatch: expected {if_match!r}, got {real_etag!r}"
                )

            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, content)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

        return self._etag(content)
