from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from docqueue.domain.errors import HandleConsumedError
from docqueue.domain.models import (
    MAX_INSTANT,
    MIN_INSTANT,
    Entry,
    Handle,
    Message,
    MongoSettings,
    QueueConfig,
    as_utc,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Instants
# ---------------------------------------------------------------------------


def test_max_and_min_instant_are_utc():
    assert MAX_INSTANT.tzinfo is UTC
    assert MIN_INSTANT.tzinfo is UTC
    assert MIN_INSTANT < NOW < MAX_INSTANT


def test_as_utc_attaches_utc_to_naive():
    naive = datetime(2024, 1, 1, 12, 0)
    assert as_utc(naive) == NOW
    assert as_utc(naive).tzinfo is UTC


def test_as_utc_converts_other_zones():
    plus_two = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus_two) == NOW
    assert as_utc(plus_two).hour == 12


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


def test_entry_new_defaults():
    entry = Entry.new({"a": 1}, earliest_get=NOW, priority=0.5, created=NOW)
    assert entry.id is None
    assert entry.payload == {"a": 1}
    assert entry.running is False
    assert entry.reset_timestamp == MAX_INSTANT
    assert entry.earliest_get == NOW
    assert entry.priority == 0.5
    assert entry.created == NOW
    assert entry.streams == ()


def test_entry_rejects_nan_priority():
    with pytest.raises(ValidationError):
        Entry.new({}, earliest_get=NOW, priority=float("nan"), created=NOW)


def test_entry_accepts_infinite_priority():
    entry = Entry.new({}, earliest_get=NOW, priority=float("inf"), created=NOW)
    assert entry.priority == float("inf")


def test_entry_populates_from_wire_names():
    entry = Entry.model_validate(
        {
            "_id": "abc",
            "payload": {"k": "v"},
            "running": True,
            "resetTimestamp": NOW,
            "earliestGet": NOW,
            "priority": 2,
            "created": NOW,
            "streams": ["b1", "b2"],
        }
    )
    assert entry.id == "abc"
    assert entry.running is True
    assert entry.reset_timestamp == NOW
    assert entry.priority == 2.0
    assert entry.streams == ("b1", "b2")


def test_entry_stringifies_native_stream_ids():
    class FakeObjectId:
        def __str__(self) -> str:
            return "65a1"

    entry = Entry.model_validate(
        {
            "payload": {},
            "earliestGet": NOW,
            "created": NOW,
            "streams": [FakeObjectId()],
        }
    )
    assert entry.streams == ("65a1",)


def test_entry_normalises_naive_instants():
    entry = Entry.new(
        {}, earliest_get=datetime(2024, 1, 1, 12, 0), priority=0.0, created=NOW
    )
    assert entry.earliest_get.tzinfo is UTC


def test_entry_is_frozen():
    entry = Entry.new({}, earliest_get=NOW, priority=0.0, created=NOW)
    with pytest.raises(Exception):
        entry.priority = 1.0


def test_entry_new_copies_payload():
    payload = {"a": 1}
    entry = Entry.new(payload, earliest_get=NOW, priority=0.0, created=NOW)
    payload["a"] = 2
    assert entry.payload == {"a": 1}


# ---------------------------------------------------------------------------
# QueueConfig / MongoSettings
# ---------------------------------------------------------------------------


def test_queue_config_defaults():
    config = QueueConfig()
    assert config.default_wait == timedelta(seconds=3)
    assert config.default_poll == timedelta(milliseconds=200)
    assert config.approximate_wait is True
    assert config.ack_multi_batch_size == 1000
    assert config.index_attempts == 5
    assert config.orphaned_blob_policy == "raise"


def test_queue_config_rejects_non_positive_batch_size():
    with pytest.raises(ValidationError):
        QueueConfig(ack_multi_batch_size=0)


def test_queue_config_rejects_unknown_policy():
    with pytest.raises(ValidationError):
        QueueConfig(orphaned_blob_policy="retry")  # type: ignore[arg-type]


def test_queue_config_is_frozen():
    config = QueueConfig()
    with pytest.raises(Exception):
        config.index_attempts = 1


def test_mongo_settings_defaults():
    settings = MongoSettings(database="db", collection="queue")
    assert settings.url == "mongodb://localhost:27017"
    assert settings.gridfs_bucket == "fs"


# ---------------------------------------------------------------------------
# Handle / Message
# ---------------------------------------------------------------------------


def test_handle_starts_usable():
    handle = Handle(id="x", payload={})
    handle.ensure_usable()
    assert handle.consumed is False


def test_handle_consumed_raises():
    handle = Handle(id="x", payload={})
    handle.mark_consumed()
    with pytest.raises(HandleConsumedError) as exc_info:
        handle.ensure_usable()
    assert exc_info.value.entry_id == "x"


def test_message_id_is_handle_id():
    handle = Handle(id="x", payload={"a": 1})
    message = Message(handle=handle, payload={"a": 1})
    assert message.id == "x"
    assert message.streams == {}
