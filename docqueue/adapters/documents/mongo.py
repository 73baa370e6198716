"""
MongoDocumentStore — MongoDB adapter using pymongo's asyncio client.

Install extras: pip install "docqueue[mongo]"

Atomicity
---------
find_one_and_update() maps to MongoDB's findAndModify, which the server
executes atomically per document: of all concurrent claimers whose filter
matches an idle entry, exactly one sees it flip to running.

Index conventions
-----------------
Recent servers reject an index whose name or key pattern conflicts with an
existing one (IndexOptionsConflict / IndexKeySpecsConflict) instead of
silently ignoring it; both surface as StorageError, which the index manager
treats the same as a no-op and resolves by re-listing indexes.

Every driver failure is wrapped in StorageError.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from docqueue.domain.errors import StorageError
from docqueue.domain.models import MongoSettings
from docqueue.ports.document_store import Filter, IndexInfo, IndexKeys, Sort, Update

if TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection


def _import_pymongo() -> Any:
    try:
        import pymongo
    except ImportError as exc:
        raise ImportError(
            "MongoDocumentStore requires pymongo. "
            "Install with: pip install 'docqueue[mongo]'"
        ) from exc
    return pymongo


@dataclasses.dataclass
class MongoDocumentStore:
    """
    MongoDB collection adapter.

    Parameters
    ----------
    collection : pymongo AsyncCollection holding the queue entries; the client
                 should be created with tz_aware=True so instants come back
                 as aware UTC datetimes
    """

    collection: AsyncCollection

    @classmethod
    def from_settings(cls, settings: MongoSettings) -> "MongoDocumentStore":
        """Open an AsyncMongoClient for `settings` and bind to its collection."""
        pymongo = _import_pymongo()
        client = pymongo.AsyncMongoClient(settings.url, tz_aware=True)
        return cls(collection=client[settings.database][settings.collection])

    async def insert(self, document: Mapping[str, Any]) -> Any:
        try:
            result = await self.collection.insert_one(dict(document))
        except Exception as exc:
            raise StorageError("MongoDB insert failed", exc) from exc
        return result.inserted_id

    async def find_one_and_update(
        self,
        filter: Filter,
        sort: Sort,
        update: Update,
    ) -> dict[str, Any] | None:
        pymongo = _import_pymongo()
        try:
            return await self.collection.find_one_and_update(
                dict(filter),
                {"$set": dict(update)},
                sort=list(sort),
                return_document=pymongo.ReturnDocument.AFTER,
            )
        except Exception as exc:
            raise StorageError("MongoDB findAndModify failed", exc) from exc

    async def update_many(self, filter: Filter, update: Update) -> int:
        try:
            result = await self.collection.update_many(
                dict(filter), {"$set": dict(update)}
            )
        except Exception as exc:
            raise StorageError("MongoDB update failed", exc) from exc
        return int(result.modified_count)

    async def upsert_by_id(
        self,
        id: Any,
        update: Update,
        on_insert: Update | None = None,
    ) -> None:
        spec: dict[str, Any] = {"$set": dict(update)}
        if on_insert:
            spec["$setOnInsert"] = dict(on_insert)
        try:
            await self.collection.update_one({"_id": id}, spec, upsert=True)
        except Exception as exc:
            raise StorageError("MongoDB upsert failed", exc) from exc

    async def remove_many(self, filter: Filter) -> int:
        try:
            result = await self.collection.delete_many(dict(filter))
        except Exception as exc:
            raise StorageError("MongoDB remove failed", exc) from exc
        return int(result.deleted_count)

    async def count(self, filter: Filter) -> int:
        try:
            return int(await self.collection.count_documents(dict(filter)))
        except Exception as exc:
            raise StorageError("MongoDB count failed", exc) from exc

    async def list_indexes(self) -> list[IndexInfo]:
        try:
            cursor = await self.collection.list_indexes()
            raw = [index async for index in cursor]
        except Exception as exc:
            raise StorageError("MongoDB listIndexes failed", exc) from exc
        return [
            IndexInfo(
                name=str(index["name"]),
                keys=tuple(
                    (str(field), _direction(value))
                    for field, value in index["key"].items()
                ),
            )
            for index in raw
        ]

    async def create_index(self, keys: IndexKeys, name: str) -> None:
        try:
            await self.collection.create_index(list(keys), name=name, background=True)
        except Exception as exc:
            raise StorageError("MongoDB createIndex failed", exc) from exc


def _direction(value: Any) -> Any:
    """Key directions come back as int or float; special indexes use strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return value
