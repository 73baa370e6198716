import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from docqueue.adapters.blobs.memory import InMemoryBlobStore
from docqueue.adapters.documents.filesystem import LocalFileDocumentStore
from docqueue.core.queue import Queue
from docqueue.domain.errors import CASConflictError, StorageError
from docqueue.domain.models import MAX_INSTANT, QueueConfig
from docqueue.ports.document_store import IndexInfo

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


async def test_missing_file_is_empty_collection(tmp_path):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    assert await store.count({}) == 0
    assert await store.list_indexes() == [IndexInfo(name="_id_", keys=(("_id", 1),))]


async def test_insert_creates_file_and_parents(tmp_path):
    path = tmp_path / "deep" / "nested" / "queue.json"
    store = LocalFileDocumentStore(path)
    await store.insert({"payload": {"a": 1}})
    assert path.exists()


async def test_path_accepts_string(tmp_path):
    store = LocalFileDocumentStore(str(tmp_path / "queue.json"))
    await store.insert({"_id": "1"})
    assert await store.count({"_id": "1"}) == 1


async def test_data_persists_across_instances(tmp_path):
    path = tmp_path / "queue.json"
    first = LocalFileDocumentStore(path)
    await first.insert({"_id": "1", "created": NOW, "resetTimestamp": MAX_INSTANT})
    await first.create_index((("a", 1),), "a_idx")

    second = LocalFileDocumentStore(path)
    [document] = await second.find({})
    assert document["created"] == NOW
    assert document["resetTimestamp"] == MAX_INSTANT
    assert (await second.list_indexes())[-1] == IndexInfo(name="a_idx", keys=(("a", 1),))


async def test_datetime_filters_survive_the_file(tmp_path):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    await store.insert({"_id": "1", "earliestGet": NOW})
    assert await store.count({"earliestGet": {"$lte": NOW + timedelta(seconds=1)}}) == 1
    assert await store.count({"earliestGet": {"$lt": NOW}}) == 0


async def test_find_one_and_update_persists(tmp_path):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    await store.insert({"_id": "1", "running": False})

    document = await store.find_one_and_update({"running": False}, [], {"running": True})

    assert document["running"] is True
    assert await store.count({"running": True}) == 1


async def test_failed_operation_does_not_write(tmp_path):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    await store.insert({"_id": "1"})
    before = (tmp_path / "queue.json").read_bytes()
    with pytest.raises(StorageError):
        await store.insert({"_id": "1"})
    assert (tmp_path / "queue.json").read_bytes() == before


# ---------------------------------------------------------------------------
# CAS loop
# ---------------------------------------------------------------------------


async def test_conflict_is_retried(tmp_path, monkeypatch):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    await store.insert({"_id": "1", "running": False})

    real_write = store._sync_write
    calls = []

    def flaky_write(content, if_match):
        calls.append(if_match)
        if len(calls) == 1:
            raise CASConflictError("simulated")
        return real_write(content, if_match)

    monkeypatch.setattr(store, "_sync_write", flaky_write)
    document = await store.find_one_and_update({"running": False}, [], {"running": True})

    assert document["running"] is True
    assert len(calls) == 2


async def test_conflict_gives_up_after_max_retries(tmp_path, monkeypatch):
    store = LocalFileDocumentStore(tmp_path / "queue.json", max_retries=3)
    calls = []

    def always_conflict(content, if_match):
        calls.append(if_match)
        raise CASConflictError("simulated")

    monkeypatch.setattr(store, "_sync_write", always_conflict)
    with pytest.raises(CASConflictError):
        await store.insert({"_id": "1"})
    assert len(calls) == 3


async def test_stale_etag_rejected(tmp_path):
    store = LocalFileDocumentStore(tmp_path / "queue.json")
    await store.insert({"_id": "1"})
    with pytest.raises(CASConflictError):
        store._sync_write(b"{}", "stale-etag")


async def test_two_instances_never_claim_the_same_entry(tmp_path):
    path = tmp_path / "queue.json"
    config = QueueConfig(default_wait=timedelta(0), approximate_wait=False)
    blobs = InMemoryBlobStore()
    producer = Queue(store=LocalFileDocumentStore(path), blobs=blobs, config=config)
    for n in range(4):
        await producer.send({"n": n})

    consumers = [
        Queue(store=LocalFileDocumentStore(path), blobs=blobs, config=config)
        for _ in range(2)
    ]
    lease = timedelta(minutes=5)
    results = await asyncio.gather(
        *(consumer.get({}, lease) for consumer in consumers for _ in range(2))
    )
    claimed = [message.id for message in results if message is not None]
    assert len(claimed) == 4
    assert len(set(claimed)) == 4
