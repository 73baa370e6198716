"""
Exception hierarchy for docqueue.

DocQueueError
├── InvalidArgumentError   — caller-contract violation, raised before any store access
│   └── HandleConsumedError — handle reused after ack / ack_send / requeue
├── CASConflictError       — write rejected because etag did not match
├── StorageError           — underlying I/O failure (wraps original exception)
├── BlobNotFoundError      — blob id unknown to the blob store
├── BlobCleanupError       — old blobs could not be deleted after an entry mutation
└── IndexCreationError     — requested index never appeared after all attempts
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class DocQueueError(Exception):
    """Base class for all docqueue exceptions."""


class InvalidArgumentError(DocQueueError, ValueError):
    """
    Raised when a caller violates a precondition.

    NaN priorities, missing queries, top-level operators in a payload filter
    and index directions other than 1 / -1 all end up here. Never retried.
    """


class HandleConsumedError(InvalidArgumentError):
    """Raised when a handle is passed to ack, ack_send or requeue a second time."""

    def __init__(self, entry_id: Any) -> None:
        self.entry_id = entry_id
        super().__init__(f"Handle for entry {entry_id!r} was already consumed")


class CASConflictError(DocQueueError):
    """
    Raised when a compare-and-set write is rejected by the storage backend.

    The caller should re-read the current state and retry the operation.
    Only the file-backed store raises it, and it retries internally first.
    """


class StorageError(DocQueueError):
    """
    Wraps an underlying I/O failure from a store adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class BlobNotFoundError(DocQueueError):
    """Raised when a blob id is not present in the blob store."""

    def __init__(self, blob_id: str) -> None:
        self.blob_id = blob_id
        super().__init__(f"Blob {blob_id!r} not found")


class BlobCleanupError(DocQueueError):
    """
    Raised after an entry mutation succeeded but some of its old blobs could not
    be deleted. The entry change is durable; the listed blobs are orphaned.
    """

    def __init__(self, blob_ids: Sequence[str]) -> None:
        self.blob_ids = tuple(blob_ids)
        super().__init__(f"Could not delete blobs {list(self.blob_ids)!r}")


class IndexCreationError(DocQueueError):
    """Raised when an index with the requested keys could not be created."""

    def __init__(self, keys: Sequence[tuple[str, int]], attempts: int) -> None:
        self.keys = tuple(keys)
        self.attempts = attempts
        super().__init__(
            f"Could not create index {list(self.keys)!r} after {attempts} attempts"
        )
