"""
InMemoryDocumentStore — asyncio.Lock-based document store for testing and development.

Keeps the collection in a DocumentCollection and serialises every call with an
asyncio.Lock, which makes find_one_and_update() atomic the way a real
document store's findAndModify is.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Mapping
from typing import Any

from docqueue.adapters.documents.collection import (
    MAX_INDEX_NAME_LENGTH,
    DocumentCollection,
)
from docqueue.ports.document_store import Filter, IndexInfo, IndexKeys, Sort, Update


@dataclasses.dataclass
class InMemoryDocumentStore:
    """
    In-process document collection.

    Parameters
    ----------
    max_index_name_length : longest index name create_index() accepts
    """

    max_index_name_length: int = MAX_INDEX_NAME_LENGTH

    def __post_init__(self) -> None:
        self._collection = DocumentCollection(
            max_index_name_length=self.max_index_name_length
        )
        self._lock: asyncio.Lock = asyncio.Lock()

    async def insert(self, document: Mapping[str, Any]) -> Any:
        async with self._lock:
            return self._collection.insert(document)

    async def find_one_and_update(
        self,
        filter: Filter,
        sort: Sort,
        update: Update,
    ) -> dict[str, Any] | None:
        async with self._lock:
            return self._collection.find_one_and_update(filter, sort, update)

    async def update_many(self, filter: Filter, update: Update) -> int:
        async with self._lock:
            return self._collection.update_many(filter, update)

    async def upsert_by_id(
        self,
        id: Any,
        update: Update,
        on_insert: Update | None = None,
    ) -> None:
        async with self._lock:
            self._collection.upsert_by_id(id, update, on_insert)

    async def remove_many(self, filter: Filter) -> int:
        async with self._lock:
            return self._collection.remove_many(filter)

    async def count(self, filter: Filter) -> int:
        async with self._lock:
            return self._collection.count(filter)

    async def list_indexes(self) -> list[IndexInfo]:
        async with self._lock:
            return self._collection.list_indexes()

    async def create_index(self, keys: IndexKeys, name: str) -> None:
        async with self._lock:
            self._collection.create_index(keys, name)

    async def find(self, filter: Filter) -> list[dict[str, Any]]:
        """Copies of matching documents (for inspection in tests and tools)."""
        async with self._lock:
            return self._collection.find(filter)
