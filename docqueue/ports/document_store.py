"""
DocumentStorePort — the backing collection the queue lives in.

Any object satisfying this structural Protocol can act as the document store.
No base class or registration is required.

Query language
--------------
Filters are MongoDB-style documents: dotted field paths mapped to a value
(equality) or to an operator document such as {"$lte": instant}. Sorts are
sequences of (field, 1 | -1). Updates are flat mappings of field → new value,
applied like MongoDB's $set.

Atomicity contract
------------------
find_one_and_update() must be atomic with respect to every other call on the
same collection, across processes: of all concurrent callers whose filter
matches a given document, exactly one observes the pre-update state. The
whole at-most-one-claimant guarantee of the queue rests on this.

Index conventions
-----------------
create_index(keys, name)
  - keys already indexed under another name → no-op
  - name already used by an index with different keys → no-op
  - name rejected by the store (e.g. too long) → StorageError
Callers must therefore re-list indexes after creating one.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

Filter = Mapping[str, Any]
Sort = Sequence[tuple[str, int]]
Update = Mapping[str, Any]
IndexKeys = tuple[tuple[str, int], ...]


@dataclasses.dataclass(frozen=True)
class IndexInfo:
    """An existing index: its name and ordered (field, direction) key sequence."""

    name: str
    keys: IndexKeys


@runtime_checkable
class DocumentStorePort(Protocol):
    """
    Minimal collection interface required by docqueue core.

    Implementing adapters (built-in):
      - InMemoryDocumentStore   — asyncio.Lock-based, for testing
      - LocalFileDocumentStore  — single JSON file, CAS loop under fcntl.flock
      - MongoDocumentStore      — MongoDB via pymongo's async client
    """

    async def insert(self, document: Mapping[str, Any]) -> Any:
        """Insert a document without an _id. Returns the store-assigned _id."""
        ...

    async def find_one_and_update(
        self,
        filter: Filter,
        sort: Sort,
        update: Update,
    ) -> dict[str, Any] | None:
        """
        Atomically set `update` on the first document matching `filter` in
        `sort` order and return it as it is after the update, or None.
        """
        ...

    async def update_many(self, filter: Filter, update: Update) -> int:
        """Set `update` on every matching document. Returns the number modified."""
        ...

    async def upsert_by_id(
        self,
        id: Any,
        update: Update,
        on_insert: Update | None = None,
    ) -> None:
        """
        Set `update` on the document with _id == id. If it does not exist,
        insert {_id: id, **update, **on_insert} instead.
        """
        ...

    async def remove_many(self, filter: Filter) -> int:
        """Remove every matching document. Returns the number removed."""
        ...

    async def count(self, filter: Filter) -> int:
        """Number of documents matching `filter`."""
        ...

    async def list_indexes(self) -> list[IndexInfo]:
        """All indexes on the collection, in creation order."""
        ...

    async def create_index(self, keys: IndexKeys, name: str) -> None:
        """Create an index; see the module docstring for collision conventions."""
        ...
