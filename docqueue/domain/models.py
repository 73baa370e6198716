"""
Domain models for docqueue.

Entry and the configuration models are backed by Pydantic v2, which handles
field validation, alias mapping to the stored document field names and
timezone normalisation. Handle and Message carry open file objects, so they
are plain dataclasses.

All Pydantic models are frozen (immutable).
"""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, BinaryIO, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docqueue.domain.errors import HandleConsumedError

MAX_INSTANT = datetime.max.replace(tzinfo=UTC)
MIN_INSTANT = datetime.min.replace(tzinfo=UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Entry(BaseModel):
    """
    One queued message, as stored in the backing collection.

    id              — store-assigned identifier (None until inserted)
    payload         — arbitrary user document
    running         — True while leased to a consumer
    reset_timestamp — instant after which a lease is abandoned; MAX_INSTANT when idle
    earliest_get    — entry is invisible to claims before this instant
    priority        — lower value = higher priority; never NaN
    created         — insertion instant, tie-breaker for equal priorities
    streams         — blob ids of attached large payloads
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Any = Field(default=None, alias="_id")
    payload: dict[str, Any]
    running: bool = False
    reset_timestamp: datetime = Field(default=MAX_INSTANT, alias="resetTimestamp")
    earliest_get: datetime = Field(alias="earliestGet")
    priority: float = 0.0
    created: datetime
    streams: tuple[str, ...] = ()

    @field_validator("priority")
    @classmethod
    def _reject_nan(cls, v: float) -> float:
        if math.isnan(v):
            raise ValueError("priority was NaN")
        return v

    @field_validator("reset_timestamp", "earliest_get", "created")
    @classmethod
    def _normalise_instant(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("streams", mode="before")
    @classmethod
    def _stringify_streams(cls, v: Any) -> Any:
        """Blob ids may come back from the store as native id types."""
        if isinstance(v, (list, tuple)):
            return tuple(str(s) for s in v)
        return v

    @classmethod
    def new(
        cls,
        payload: Mapping[str, Any],
        earliest_get: datetime,
        priority: float,
        created: datetime,
        streams: tuple[str, ...] = (),
    ) -> "Entry":
        """Factory for a not-yet-inserted, idle entry."""
        return cls(
            payload=dict(payload),
            earliest_get=earliest_get,
            priority=priority,
            created=created,
            streams=streams,
        )


class QueueConfig(BaseModel):
    """
    Explicit queue configuration, passed to Queue at construction.

    default_wait          — how long get() keeps polling when no wait is given
    default_poll          — pause between attempts when no poll is given
    approximate_wait      — jitter the wait by ±10 % when get() is not told otherwise
    ack_multi_batch_size  — ids per "_id in [...]" removal in ack_multi()
    index_attempts        — fresh index names tried before IndexCreationError
    orphaned_blob_policy  — "raise" BlobCleanupError or only "log" undeletable blobs
    """

    model_config = ConfigDict(frozen=True)

    default_wait: timedelta = timedelta(seconds=3)
    default_poll: timedelta = timedelta(milliseconds=200)
    approximate_wait: bool = True
    ack_multi_batch_size: int = Field(default=1000, gt=0)
    index_attempts: int = Field(default=5, gt=0)
    orphaned_blob_policy: Literal["raise", "log"] = "raise"


class MongoSettings(BaseModel):
    """Connection parameters for the MongoDB document and GridFS blob adapters."""

    model_config = ConfigDict(frozen=True)

    url: str = "mongodb://localhost:27017"
    database: str
    collection: str
    gridfs_bucket: str = "fs"


@dataclasses.dataclass
class Handle:
    """
    Ownership token for a claimed entry.

    id       — the entry id; the only identifier used by ack / ack_send
    payload  — payload snapshot taken at claim time, reused by requeue()
    streams  — open blob streams keyed by blob id

    A handle is consumed by the first successful ack, ack_send or requeue.
    """

    id: Any
    payload: dict[str, Any]
    streams: dict[str, BinaryIO] = dataclasses.field(default_factory=dict)
    consumed: bool = dataclasses.field(default=False, init=False)

    def ensure_usable(self) -> None:
        """Raise HandleConsumedError if this handle was already consumed."""
        if self.consumed:
            raise HandleConsumedError(self.id)

    def mark_consumed(self) -> None:
        self.consumed = True


@dataclasses.dataclass
class Message:
    """Result of a successful claim: the handle, the payload and the streams by filename."""

    handle: Handle
    payload: dict[str, Any]
    streams: dict[str, BinaryIO] = dataclasses.field(default_factory=dict)

    @property
    def id(self) -> Any:
        return self.handle.id
