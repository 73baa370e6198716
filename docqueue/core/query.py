"""
Filter and sort documents issued against the backing store.

Callers address payload fields only; every builder here prefixes them with
"payload." and adds the queue's own bookkeeping conditions. Top-level keys of
a caller query must be field paths, never operators: {"a": {"$gt": 1}} and
{"b.c": 3} are fine, {"$and": [...]} is rejected.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from docqueue.domain.errors import InvalidArgumentError
from docqueue.domain.models import MAX_INSTANT
from docqueue.ports.document_store import Sort

ID = "_id"
PAYLOAD = "payload"
RUNNING = "running"
RESET_TIMESTAMP = "resetTimestamp"
EARLIEST_GET = "earliestGet"
PRIORITY = "priority"
CREATED = "created"
STREAMS = "streams"

CLAIM_SORT: Sort = ((PRIORITY, 1), (CREATED, 1))


def validate_query(query: Any, name: str = "query") -> Mapping[str, Any]:
    """Reject a missing query, a non-mapping query or a top-level operator."""
    if query is None:
        raise InvalidArgumentError(f"{name} is required")
    if not isinstance(query, Mapping):
        raise InvalidArgumentError(
            f"{name} must be a mapping, got {type(query).__name__}"
        )
    for field in query:
        if not isinstance(field, str) or not field:
            raise InvalidArgumentError(f"{name} keys must be non-empty strings")
        if field.startswith("$"):
            raise InvalidArgumentError(
                f"{name} must not contain top-level operators, got {field!r}"
            )
    return query


def payload_fields(query: Mapping[str, Any]) -> dict[str, Any]:
    return {f"{PAYLOAD}.{field}": value for field, value in query.items()}


def stuck_filter(now: datetime) -> dict[str, Any]:
    """Leases whose reset instant has passed."""
    return {RUNNING: True, RESET_TIMESTAMP: {"$lte": now}}


def release_update() -> dict[str, Any]:
    """Fields that return an entry to the idle, claimable state."""
    return {RUNNING: False, RESET_TIMESTAMP: MAX_INSTANT}


def claim_filter(query: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    """Idle entries matching `query` that are eligible at `now`."""
    built: dict[str, Any] = {RUNNING: False}
    built.update(payload_fields(query))
    built[EARLIEST_GET] = {"$lte": now}
    return built


def claim_update(reset_at: datetime) -> dict[str, Any]:
    return {RUNNING: True, RESET_TIMESTAMP: reset_at}


def count_filter(query: Mapping[str, Any], running: bool | None) -> dict[str, Any]:
    built: dict[str, Any] = {}
    if running is not None:
        built[RUNNING] = running
    built.update(payload_fields(query))
    return built
