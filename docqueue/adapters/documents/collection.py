"""
DocumentCollection — synchronous, single-owner collection semantics.

Shared by the in-process document stores. It holds documents and index
definitions as plain Python data and implements every DocumentStorePort
operation without any locking; the adapters wrapping it decide how calls are
serialised (an asyncio.Lock, or a compare-and-set write of the whole
snapshot).

Index conventions mirror MongoDB: a default "_id_" index exists from the
start, creating keys that already exist under another name is a no-op,
reusing a name for different keys is a no-op, and names longer than
`max_index_name_length` are rejected with StorageError.
"""

from __future__ import annotations

import copy
import dataclasses
import uuid
from collections.abc import Mapping
from typing import Any

from docqueue.core.matching import matches, set_path, sorted_documents
from docqueue.domain.errors import StorageError
from docqueue.ports.document_store import Filter, IndexInfo, IndexKeys, Sort, Update

DEFAULT_INDEX = IndexInfo(name="_id_", keys=(("_id", 1),))

# MongoDB's historical limit on "<db>.<collection>.$<index name>".
MAX_INDEX_NAME_LENGTH = 127


def new_id() -> str:
    return uuid.uuid4().hex


@dataclasses.dataclass
class DocumentCollection:
    """Documents in insertion order plus index definitions in creation order."""

    documents: list[dict[str, Any]] = dataclasses.field(default_factory=list)
    indexes: list[IndexInfo] = dataclasses.field(
        default_factory=lambda: [DEFAULT_INDEX]
    )
    max_index_name_length: int = MAX_INDEX_NAME_LENGTH

    # ------------------------------------------------------------------ #
    # Snapshot helpers                                                     #
    # ------------------------------------------------------------------ #

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "documents": self.documents,
            "indexes": [
                {"name": index.name, "keys": [list(key) for key in index.keys]}
                for index in self.indexes
            ],
        }

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Mapping[str, Any] | None,
        max_index_name_length: int = MAX_INDEX_NAME_LENGTH,
    ) -> "DocumentCollection":
        if not snapshot:
            return cls(max_index_name_length=max_index_name_length)
        return cls(
            documents=list(snapshot.get("documents", [])),
            indexes=[
                IndexInfo(
                    name=index["name"],
                    keys=tuple((field, direction) for field, direction in index["keys"]),
                )
                for index in snapshot.get("indexes", [])
            ]
            or [DEFAULT_INDEX],
            max_index_name_length=max_index_name_length,
        )

    # ------------------------------------------------------------------ #
    # Document operations                                                  #
    # ------------------------------------------------------------------ #

    def insert(self, document: Mapping[str, Any]) -> Any:
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", new_id())
        if any(d["_id"] == stored["_id"] for d in self.documents):
            raise StorageError(
                "insert failed", KeyError(f"duplicate _id {stored['_id']!r}")
            )
        self.documents.append(stored)
        return stored["_id"]

    def find_one_and_update(
        self,
        filter: Filter,
        sort: Sort,
        update: Update,
    ) -> dict[str, Any] | None:
        candidates = [d for d in self.documents if matches(d, filter)]
        if not candidates:
            return None
        target = sorted_documents(candidates, sort)[0]
        _apply(target, update)
        return copy.deepcopy(target)

    def update_many(self, filter: Filter, update: Update) -> int:
        modified = 0
        for document in self.documents:
            if matches(document, filter):
                _apply(document, update)
                modified += 1
        return modified

    def upsert_by_id(
        self,
        id: Any,
        update: Update,
        on_insert: Update | None = None,
    ) -> None:
        for document in self.documents:
            if document["_id"] == id:
                _apply(document, update)
                return
        inserted: dict[str, Any] = {"_id": id}
        _apply(inserted, update)
        _apply(inserted, on_insert or {})
        self.documents.append(inserted)

    def remove_many(self, filter: Filter) -> int:
        kept = [d for d in self.documents if not matches(d, filter)]
        removed = len(self.documents) - len(kept)
        self.documents = kept
        return removed

    def count(self, filter: Filter) -> int:
        return sum(1 for d in self.documents if matches(d, filter))

    def find(self, filter: Filter) -> list[dict[str, Any]]:
        """Copies of matching documents in insertion order (inspection helper)."""
        return [copy.deepcopy(d) for d in self.documents if matches(d, filter)]

    # ------------------------------------------------------------------ #
    # Index operations                                                     #
    # ------------------------------------------------------------------ #

    def list_indexes(self) -> list[IndexInfo]:
        return list(self.indexes)

    def create_index(self, keys: IndexKeys, name: str) -> None:
        if not name or len(name) > self.max_index_name_length:
            raise StorageError(
                "create_index failed",
                ValueError(f"index name {name!r} is not allowed"),
            )
        keys = tuple((field, direction) for field, direction in keys)
        for index in self.indexes:
            if index.keys == keys or index.name == name:
                return
        self.indexes.append(IndexInfo(name=name, keys=keys))


def _apply(document: dict[str, Any], update: Update) -> None:
    for path, value in update.items():
        set_path(document, path, copy.deepcopy(value))
