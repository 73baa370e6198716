"""
IndexManager — create the compound indexes the claim and count queries need.

Key layout for get(), following the equality → sort → range rule:

    running, payload.<before>..., priority, created, payload.<after>..., earliestGet

plus (running, resetTimestamp) for the stuck-lease sweep that precedes every
claim attempt. For count(): [running,] payload.<fields>...

Idempotence
-----------
An index is only created when its key sequence is not a prefix of (or equal
to) an existing index's key sequence. Names are throwaway uuid4 strings:
the store silently ignores an index whose keys already exist under another
name, and may ignore or reject a clashing or over-long name, so success is
judged by re-listing indexes and looking for the exact key sequence. On a
miss the name is shortened one character at a time, then a fresh name is
drawn, `attempts` times in total.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from docqueue.core.query import (
    CREATED,
    EARLIEST_GET,
    PAYLOAD,
    PRIORITY,
    RESET_TIMESTAMP,
    RUNNING,
)
from docqueue.domain.errors import IndexCreationError, InvalidArgumentError, StorageError
from docqueue.ports.document_store import DocumentStorePort, IndexKeys

logger = logging.getLogger(__name__)


def _payload_keys(fields: Any, name: str) -> list[tuple[str, int]]:
    if fields is None:
        raise InvalidArgumentError(f"{name} is required")
    if not isinstance(fields, Mapping):
        raise InvalidArgumentError(f"{name} must be a mapping of field → 1 or -1")
    keys: list[tuple[str, int]] = []
    for field, direction in fields.items():
        if isinstance(direction, bool) or direction not in (1, -1):
            raise InvalidArgumentError(
                f"{name} field values must be 1 or -1 for ascending or descending, "
                f"got {field!r}: {direction!r}"
            )
        keys.append((f"{PAYLOAD}.{field}", int(direction)))
    return keys


def get_index_keys(
    before: Mapping[str, int] | None = None,
    after: Mapping[str, int] | None = None,
) -> IndexKeys:
    """Key sequence of the main claim index."""
    keys: list[tuple[str, int]] = [(RUNNING, 1)]
    keys += _payload_keys({} if before is None else before, "before")
    keys += [(PRIORITY, 1), (CREATED, 1)]
    keys += _payload_keys({} if after is None else after, "after")
    keys.append((EARLIEST_GET, 1))
    return tuple(keys)


STUCK_INDEX_KEYS: IndexKeys = ((RUNNING, 1), (RESET_TIMESTAMP, 1))


def count_index_keys(fields: Mapping[str, int], include_running: bool) -> IndexKeys:
    keys: list[tuple[str, int]] = [(RUNNING, 1)] if include_running else []
    keys += _payload_keys(fields, "fields")
    return tuple(keys)


@dataclasses.dataclass
class IndexManager:
    """
    Builds and verifies indexes on a DocumentStorePort.

    Parameters
    ----------
    store    : the queue's document store
    attempts : fresh index names to try before IndexCreationError
    """

    store: DocumentStorePort
    attempts: int = 5

    async def ensure_get_index(
        self,
        before: Mapping[str, int] | None = None,
        after: Mapping[str, int] | None = None,
    ) -> None:
        """
        Ensure the indexes behind get().

        before : payload fields queried by equality, placed ahead of the sort fields
        after  : payload fields queried by range, placed after the sort fields
        """
        keys = get_index_keys(before, after)
        await self.ensure(keys)
        await self.ensure(STUCK_INDEX_KEYS)

    async def ensure_count_index(
        self,
        fields: Mapping[str, int],
        include_running: bool,
    ) -> None:
        """
        Ensure an index for count().

        A no-op when the key sequence is a prefix of an existing index, so call
        a matching ensure_get_index() first.
        """
        await self.ensure(count_index_keys(fields, include_running))

    async def ensure(self, keys: IndexKeys) -> None:
        """Create an index over `keys` unless one already covers them."""
        if await self._covered(keys):
            logger.debug("Index %s already covered", keys)
            return

        for attempt in range(self.attempts):
            name = str(uuid.uuid4())
            while name:
                try:
                    await self.store.create_index(keys, name)
                except StorageError as exc:
                    # Typically the name was too long for the store.
                    logger.debug("create_index %r rejected: %s", name, exc)

                if await self._exists(keys):
                    logger.info("Ensured index %s as %r", keys, name)
                    return
                name = name[:-1]
            logger.debug("Index %s still missing after attempt %d", keys, attempt + 1)

        raise IndexCreationError(keys, self.attempts)

    async def _covered(self, keys: IndexKeys) -> bool:
        for index in await self.store.list_indexes():
            if index.keys[: len(keys)] == keys:
                return True
        return False

    async def _exists(self, keys: IndexKeys) -> bool:
        return any(index.keys == keys for index in await self.store.list_indexes())
