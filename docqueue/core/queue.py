"""
Queue — the public surface: send, get, count, ack, ack_multi, ack_send, requeue.

Every state transition is a single store call:

  send      insert                    (new id, nothing to contend with)
  get       reap + find_one_and_update (see ClaimEngine)
  ack       remove by id
  ack_multi remove by "_id in [...]", in batches
  ack_send  upsert by id               (atomic acknowledge-and-replace)
  requeue   ack_send with the handle's own payload and blobs

Blobs are uploaded before the entry write and released after it. The two are
not transactional: a blob-store failure after a successful entry write leaves
orphaned blobs, which are logged and, under the default "raise" policy,
reported with BlobCleanupError. Orphans are never retried.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from docqueue.core import codec, query, timing
from docqueue.core.claim import ClaimEngine
from docqueue.core.indexes import IndexManager
from docqueue.domain.errors import BlobCleanupError, InvalidArgumentError
from docqueue.domain.models import (
    MAX_INSTANT,
    Entry,
    Handle,
    Message,
    QueueConfig,
    as_utc,
)
from docqueue.ports.blob_store import BlobSource, BlobStorePort
from docqueue.ports.document_store import DocumentStorePort

logger = logging.getLogger(__name__)

Streams = Mapping[str, BlobSource]


def _check_priority(priority: Any) -> float:
    if isinstance(priority, bool) or not isinstance(priority, (int, float)):
        raise InvalidArgumentError(
            f"priority must be a number, got {type(priority).__name__}"
        )
    if math.isnan(priority):
        raise InvalidArgumentError("priority was NaN")
    return float(priority)


def _check_payload(payload: Any) -> dict[str, Any]:
    if payload is None:
        raise InvalidArgumentError("payload is required")
    if not isinstance(payload, Mapping):
        raise InvalidArgumentError(
            f"payload must be a mapping, got {type(payload).__name__}"
        )
    return dict(payload)


def _check_handle(handle: Any) -> Handle:
    if handle is None:
        raise InvalidArgumentError("handle is required")
    if not isinstance(handle, Handle):
        raise InvalidArgumentError(
            f"handle must be a Handle, got {type(handle).__name__}"
        )
    handle.ensure_usable()
    return handle


def _check_streams(streams: Any, name: str = "streams") -> Streams:
    if not isinstance(streams, Mapping):
        raise InvalidArgumentError(
            f"{name} must map filenames to bytes or binary files"
        )
    return streams


@dataclasses.dataclass
class Queue:
    """
    Priority queue over a document store and a blob store.

    Parameters
    ----------
    store  : DocumentStorePort holding one document per entry
    blobs  : BlobStorePort holding entry attachments
    config : QueueConfig with polling defaults and batch / retry limits

    Usage
    -----
        queue = Queue(InMemoryDocumentStore(), InMemoryBlobStore())
        await queue.ensure_get_index({"type": 1})

        await queue.send({"type": "email", "to": "user@example.com"})

        message = await queue.get({"type": "email"}, lease=timedelta(minutes=5))
        if message is not None:
            deliver(message.payload)
            await queue.ack(message.handle)
    """

    store: DocumentStorePort
    blobs: BlobStorePort
    config: QueueConfig = dataclasses.field(default_factory=QueueConfig)

    _claims: ClaimEngine = dataclasses.field(init=False, repr=False)
    _indexes: IndexManager = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._claims = ClaimEngine(store=self.store, blobs=self.blobs, config=self.config)
        self._indexes = IndexManager(store=self.store, attempts=self.config.index_attempts)

    # ------------------------------------------------------------------ #
    # Indexes                                                              #
    # ------------------------------------------------------------------ #

    async def ensure_get_index(
        self,
        before: Mapping[str, int] | None = None,
        after: Mapping[str, int] | None = None,
    ) -> None:
        """Ensure the indexes get() needs; see IndexManager.ensure_get_index."""
        await self._indexes.ensure_get_index(before, after)

    async def ensure_count_index(
        self,
        fields: Mapping[str, int],
        include_running: bool,
    ) -> None:
        """Ensure an index for count(); see IndexManager.ensure_count_index."""
        await self._indexes.ensure_count_index(fields, include_running)

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def get(
        self,
        filter: Mapping[str, Any],
        lease: timedelta,
        wait: timedelta | None = None,
        poll: timedelta | None = None,
        jitter: bool | None = None,
    ) -> Message | None:
        """Claim the next matching entry, or None after `wait`. See ClaimEngine.get."""
        return await self._claims.get(filter, lease, wait, poll, jitter)

    async def count(
        self,
        filter: Mapping[str, Any],
        running: bool | None = None,
    ) -> int:
        """Entries whose payload matches `filter`, optionally only (not) running."""
        query.validate_query(filter, "filter")
        return await self.store.count(query.count_filter(filter, running))

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    async def send(
        self,
        payload: Mapping[str, Any],
        earliest_get: datetime | None = None,
        priority: float = 0.0,
        streams: Streams | None = None,
    ) -> Any:
        """
        Add an entry. Returns the id the store assigned.

        earliest_get : entry stays invisible to get() until this instant (default now)
        priority     : lower is served first; NaN is rejected
        streams      : filename → bytes or binary file, uploaded as blobs first
        """
        payload = _check_payload(payload)
        priority = _check_priority(priority)
        streams = _check_streams({} if streams is None else streams)

        blob_ids = await self._upload(streams)
        now = timing.utcnow()
        entry = Entry.new(
            payload,
            earliest_get=now if earliest_get is None else as_utc(earliest_get),
            priority=priority,
            created=now,
            streams=blob_ids,
        )
        entry_id = await self.store.insert(codec.encode(entry))
        logger.debug("Sent entry %r with priority %s", entry_id, priority)
        return entry_id

    async def ack(self, handle: Handle) -> None:
        """Remove a processed entry and delete its blobs."""
        handle = _check_handle(handle)
        await self.store.remove_many({query.ID: handle.id})
        handle.mark_consumed()
        logger.debug("Acked entry %r", handle.id)
        await self._release([handle], delete=True)

    async def ack_multi(self, handles: Iterable[Handle]) -> None:
        """Remove many processed entries, batching the id lists, then delete their blobs."""
        if handles is None:
            raise InvalidArgumentError("handles is required")
        checked = [_check_handle(handle) for handle in handles]
        ids = [handle.id for handle in checked]
        if len(set(ids)) != len(ids):
            raise InvalidArgumentError("handles must not repeat an entry id")

        size = self.config.ack_multi_batch_size
        for start in range(0, len(checked), size):
            batch = checked[start : start + size]
            await self.store.remove_many(
                {query.ID: {"$in": [handle.id for handle in batch]}}
            )
            for handle in batch:
                handle.mark_consumed()

        if checked:
            logger.debug("Acked %d entries", len(checked))
        await self._release(checked, delete=True)

    async def ack_send(
        self,
        handle: Handle,
        payload: Mapping[str, Any],
        earliest_get: datetime | None = None,
        priority: float = 0.0,
        new_timestamp: bool = True,
        streams: Streams | None = None,
    ) -> None:
        """
        Atomically acknowledge `handle` and replace its entry with a new one.

        new_timestamp : False keeps the entry's original `created`, so it keeps
                        its place among equal priorities
        streams       : None keeps the entry's current blobs; a mapping (even an
                        empty one) replaces them and deletes the old ones

        If the entry vanished since it was claimed, it is re-inserted under the
        same id instead of failing.
        """
        handle = _check_handle(handle)
        payload = _check_payload(payload)
        priority = _check_priority(priority)
        if streams is not None:
            streams = _check_streams(streams)

        now = timing.utcnow()
        to_set: dict[str, Any] = {
            query.PAYLOAD: payload,
            query.RUNNING: False,
            query.RESET_TIMESTAMP: MAX_INSTANT,
            query.EARLIEST_GET: now if earliest_get is None else as_utc(earliest_get),
            query.PRIORITY: priority,
        }
        if new_timestamp:
            to_set[query.CREATED] = now
        if streams is not None:
            to_set[query.STREAMS] = list(await self._upload(streams))

        on_insert = {
            field: value
            for field, value in ((query.CREATED, now), (query.STREAMS, []))
            if field not in to_set
        }
        await self.store.upsert_by_id(handle.id, to_set, on_insert)
        handle.mark_consumed()
        logger.debug("Ack-sent entry %r", handle.id)
        await self._release([handle], delete=streams is not None)

    async def requeue(
        self,
        handle: Handle,
        earliest_get: datetime | None = None,
        priority: float = 0.0,
    ) -> None:
        """Put a claimed entry back at the end of its priority, keeping payload and blobs."""
        handle = _check_handle(handle)
        await self.ack_send(
            handle,
            handle.payload,
            earliest_get=earliest_get,
            priority=priority,
            new_timestamp=True,
            streams=None,
        )

    # ------------------------------------------------------------------ #
    # Blobs                                                                #
    # ------------------------------------------------------------------ #

    async def _upload(self, streams: Streams) -> tuple[str, ...]:
        blob_ids: list[str] = []
        for name, data in streams.items():
            blob_ids.append(await self.blobs.upload(name, data))
        return tuple(blob_ids)

    async def _release(self, handles: Iterable[Handle], delete: bool) -> None:
        """
        Close every stream the handles hold and, if `delete`, delete the blobs.

        Every stream is closed and every delete attempted even when some fail.
        """
        orphaned: list[str] = []
        first_error: Exception | None = None
        for handle in handles:
            for blob_id, stream in handle.streams.items():
                try:
                    stream.close()
                except Exception as exc:
                    logger.warning(
                        "Could not close blob %r of entry %r: %s", blob_id, handle.id, exc
                    )
                if not delete:
                    continue
                try:
                    await self.blobs.delete(blob_id)
                except Exception as exc:
                    logger.warning(
                        "Could not delete blob %r of entry %r: %s",
                        blob_id,
                        handle.id,
                        exc,
                    )
                    orphaned.append(blob_id)
                    first_error = first_error or exc

        if orphaned and self.config.orphaned_blob_policy == "raise":
            raise BlobCleanupError(orphaned) from first_error
