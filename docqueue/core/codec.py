"""
Codec — convert between Entry models, store documents and JSON bytes.

Store documents use the wire field names (aliases on Entry):

{
  "_id": "5f0c...",                       <-- assigned by the store, omitted on insert
  "payload": {"to": "user@example.com"},
  "running": false,
  "resetTimestamp": datetime(9999-12-31 23:59:59.999999+00:00),
  "earliestGet": datetime(...),
  "priority": 0.0,
  "created": datetime(...),
  "streams": ["blob-id-1", "blob-id-2"]
}

Datetimes stay native in documents (every document store has a date type).
Stores that persist documents as JSON use dumps()/loads(), which tag
datetimes as {"$date": "<ISO-8601>"} so they round-trip with their type; stored
keys that start with "$" are written with an extra "$" so they never read
back as a tag.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from docqueue.domain.models import Entry, as_utc

_DATE = "$date"


def encode(entry: Entry) -> dict[str, Any]:
    """Entry → store document. The _id is dropped when the entry has none yet."""
    document = entry.model_dump(by_alias=True)
    if document.get("_id") is None:
        document.pop("_id", None)
    document["streams"] = list(entry.streams)
    return document


def decode(document: Mapping[str, Any]) -> Entry:
    """Store document → Entry."""
    return Entry.model_validate(dict(document))


def dumps(value: Any) -> bytes:
    """Serialize documents to UTF-8 JSON bytes, tagging datetimes."""
    return json.dumps(_escape(value), default=_encode_default, indent=2).encode("utf-8")


def loads(data: bytes) -> Any:
    """Inverse of dumps()."""
    return json.loads(data, object_hook=_decode_hook)


def _escape(value: Any) -> Any:
    # Stored keys starting with "$" get one more "$", so only tags use a single one.
    match value:
        case Mapping():
            return {_escape_key(key): _escape(v) for key, v in value.items()}
        case list() | tuple():
            return [_escape(v) for v in value]
        case _:
            return value


def _escape_key(key: Any) -> Any:
    return "$" + key if isinstance(key, str) and key.startswith("$") else key


def _encode_default(value: Any) -> Any:
    match value:
        case datetime():
            return {_DATE: as_utc(value).isoformat()}
        case set() | frozenset():
            return list(value)
        case _:
            raise TypeError(
                f"Object of type {type(value).__name__} is not JSON serializable"
            )


def _decode_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATE in obj:
        return as_utc(datetime.fromisoformat(obj[_DATE]))
    return {key[1:] if key.startswith("$$") else key: v for key, v in obj.items()}
