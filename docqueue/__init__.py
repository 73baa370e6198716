"""
docqueue — priority message queue on a document store with atomic claims.

Each message is one document in a collection. A consumer claims the next
eligible message with a single atomic "find one matching document and
update it" call, which is what makes delivery exactly-one-claimant across
any number of processes:

  - ordered by priority (lower first), then by creation time
  - invisible until its earliestGet instant
  - leased for a caller-chosen duration; abandoned leases are reset by the
    next get() from any consumer, no sweeper process required
  - ack removes it, ack_send / requeue replace it in place atomically
  - large attachments live in a companion blob store

Quick start
-----------
    import asyncio
    from datetime import timedelta

    from docqueue import InMemoryBlobStore, InMemoryDocumentStore, Queue

    async def main():
        queue = Queue(InMemoryDocumentStore(), InMemoryBlobStore())
        await queue.ensure_get_index({"type": 1})

        await queue.send({"type": "email", "to": "user@example.com"}, priority=1.0)

        message = await queue.get({"type": "email"}, lease=timedelta(minutes=5))
        if message is not None:
            print(f"Processing {message.payload}")
            await queue.ack(message.handle)

    asyncio.run(main())

Adapters
--------
Built-in (no extra deps):
  - InMemoryDocumentStore / InMemoryBlobStore   — for tests and examples
  - LocalFileDocumentStore / LocalFileBlobStore — single machine; the document
    store claims through a compare-and-set loop under fcntl.flock

Optional (install extras):
  - MongoDocumentStore, GridFSBlobStore (pip install "docqueue[mongo]")
  - S3BlobStore                         (pip install "docqueue[s3]")
  - GCSBlobStore                        (pip install "docqueue[gcs]")

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — value types (Entry, Handle, Message, QueueConfig) and errors
  ports/    — Protocol interfaces (DocumentStorePort, BlobStorePort)
  core/     — business logic (Queue, ClaimEngine, IndexManager)
  adapters/ — concrete document and blob stores
"""
from __future__ import annotations

from docqueue.adapters.blobs.filesystem import LocalFileBlobStore
from docqueue.adapters.blobs.memory import InMemoryBlobStore
from docqueue.adapters.documents.filesystem import LocalFileDocumentStore
from docqueue.adapters.documents.memory import InMemoryDocumentStore
from docqueue.core.claim import ClaimEngine
from docqueue.core.indexes import IndexManager
from docqueue.core.queue import Queue
from docqueue.domain.errors import (
    BlobCleanupError,
    BlobNotFoundError,
    CASConflictError,
    DocQueueError,
    HandleConsumedError,
    IndexCreationError,
    InvalidArgumentError,
    StorageError,
)
from docqueue.domain.models import (
    MAX_INSTANT,
    MIN_INSTANT,
    Entry,
    Handle,
    Message,
    MongoSettings,
    QueueConfig,
)
from docqueue.ports.blob_store import BlobStorePort, OpenedBlob
from docqueue.ports.document_store import DocumentStorePort, IndexInfo

__all__ = [
    # Domain models
    "Entry",
    "Handle",
    "Message",
    "QueueConfig",
    "MongoSettings",
    "MAX_INSTANT",
    "MIN_INSTANT",
    # Errors
    "DocQueueError",
    "InvalidArgumentError",
    "HandleConsumedError",
    "CASConflictError",
    "StorageError",
    "BlobNotFoundError",
    "BlobCleanupError",
    "IndexCreationError",
    # Ports (for typing custom adapters)
    "DocumentStorePort",
    "IndexInfo",
    "BlobStorePort",
    "OpenedBlob",
    # High-level queue API
    "Queue",
    "ClaimEngine",
    "IndexManager",
    # Built-in adapters
    "InMemoryDocumentStore",
    "LocalFileDocumentStore",
    "InMemoryBlobStore",
    "LocalFileBlobStore",
]
