"""
ClaimEngine — lease the next eligible entry, polling until a deadline.

Each attempt is three store calls and no in-process locking:

  1. reap   update_many(running & resetTimestamp <= now → idle)
  2. claim  find_one_and_update(idle & payload filter & earliestGet <= now,
                                sort=(priority, created),
                                set running, resetTimestamp = now + lease)
  3. open   every blob the claimed entry references

At-most-one-claimant rests entirely on the atomicity of step 2 in the
backing store. Reaping piggybacks on every attempt of every consumer, so no
background sweeper is needed.

Between attempts the task sleeps for the poll interval (asyncio.sleep, so
other coroutines keep running). Only "nothing to claim" is retried; store and
blob failures propagate to the caller.
"""
from __future__ import annotations

import asyncio
import contextlib
import copy
import dataclasses
import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from docqueue.core import codec, query, timing
from docqueue.domain.errors import InvalidArgumentError
from docqueue.domain.models import Entry, Handle, Message, QueueConfig
from docqueue.ports.blob_store import BlobStorePort
from docqueue.ports.document_store import DocumentStorePort

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ClaimEngine:
    """
    The get() protocol over a document store and a blob store.

    Parameters
    ----------
    store  : backing DocumentStorePort
    blobs  : BlobStorePort holding entry attachments
    config : defaults for wait, poll and jitter
    """

    store: DocumentStorePort
    blobs: BlobStorePort
    config: QueueConfig = dataclasses.field(default_factory=QueueConfig)

    async def get(
        self,
        filter: Mapping[str, Any],
        lease: timedelta,
        wait: timedelta | None = None,
        poll: timedelta | None = None,
        jitter: bool | None = None,
    ) -> Message | None:
        """
        Claim one idle, eligible entry whose payload matches `filter`.

        filter : payload field paths → value or operator document; no
                 top-level operators ({"a": {"$gt": 1}} ok, {"$and": [...]} not)
        lease  : how long the claim lasts before the entry is reclaimable
        wait   : keep polling this long before returning None
        poll   : pause between attempts
        jitter : perturb `wait` by ±10 % to desynchronise consumers

        Returns the claimed Message, or None when the wait elapsed.
        """
        query.validate_query(filter, "filter")
        if not isinstance(lease, timedelta):
            raise InvalidArgumentError("lease must be a timedelta")
        wait = self.config.default_wait if wait is None else wait
        poll = self.config.default_poll if poll is None else poll
        jitter = self.config.approximate_wait if jitter is None else jitter

        end = timing.deadline(timing.utcnow(), wait, jitter)
        sleep_for = timing.clamp_poll(poll)

        while True:
            message = await self._attempt(filter, lease)
            if message is not None:
                return message

            if timing.utcnow() >= end:
                return None

            logger.debug("Nothing to claim for %r, sleeping %.3fs", filter, sleep_for)
            await asyncio.sleep(sleep_for)

            if timing.utcnow() >= end:
                return None

    async def reap(self) -> int:
        """Return every entry with an expired lease to the idle state."""
        reaped = await self.store.update_many(
            query.stuck_filter(timing.utcnow()), query.release_update()
        )
        if reaped:
            logger.info("Reset %d stuck entries", reaped)
        return reaped

    async def _attempt(
        self,
        filter: Mapping[str, Any],
        lease: timedelta,
    ) -> Message | None:
        await self.reap()

        now = timing.utcnow()
        document = await self.store.find_one_and_update(
            query.claim_filter(filter, now),
            query.CLAIM_SORT,
            query.claim_update(timing.saturating_add(now, lease)),
        )
        if document is None:
            return None

        entry = codec.decode(document)
        logger.debug("Claimed entry %r until %s", entry.id, entry.reset_timestamp)
        return await self._open(entry)

    async def _open(self, entry: Entry) -> Message:
        """Open the entry's blobs; already-opened streams are closed if one fails."""
        handle_streams = {}
        message_streams = {}
        with contextlib.ExitStack() as stack:
            for blob_id in entry.streams:
                opened = await self.blobs.open(blob_id)
                stack.callback(opened.stream.close)
                handle_streams[blob_id] = opened.stream
                message_streams[opened.name] = opened.stream
            stack.pop_all()

        handle = Handle(
            id=entry.id,
            payload=copy.deepcopy(entry.payload),
            streams=handle_streams,
        )
        return Message(handle=handle, payload=entry.payload, streams=message_streams)
