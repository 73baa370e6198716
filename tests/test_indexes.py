from unittest.mock import AsyncMock, patch

import pytest

from docqueue.adapters.documents.memory import InMemoryDocumentStore
from docqueue.core.indexes import (
    STUCK_INDEX_KEYS,
    IndexManager,
    count_index_keys,
    get_index_keys,
)
from docqueue.domain.errors import IndexCreationError, InvalidArgumentError, StorageError
from docqueue.ports.document_store import IndexInfo

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def manager(store: InMemoryDocumentStore) -> IndexManager:
    return IndexManager(store=store)


async def _keys(store: InMemoryDocumentStore) -> list[tuple]:
    return [index.keys for index in await store.list_indexes()]


# ---------------------------------------------------------------------------
# Key layouts
# ---------------------------------------------------------------------------


def test_get_index_keys_layout():
    keys = get_index_keys({"type": 1, "boo": -1}, {"size": -1})
    assert keys == (
        ("running", 1),
        ("payload.type", 1),
        ("payload.boo", -1),
        ("priority", 1),
        ("created", 1),
        ("payload.size", -1),
        ("earliestGet", 1),
    )


def test_get_index_keys_without_fields():
    assert get_index_keys() == (
        ("running", 1),
        ("priority", 1),
        ("created", 1),
        ("earliestGet", 1),
    )


def test_count_index_keys_with_running():
    assert count_index_keys({"a": 1, "b": -1}, True) == (
        ("running", 1),
        ("payload.a", 1),
        ("payload.b", -1),
    )


def test_count_index_keys_without_running():
    assert count_index_keys({"a": 1}, False) == (("payload.a", 1),)


@pytest.mark.parametrize("bad", [0, 2, "1", True, None, 1.5])
def test_bad_direction_rejected(bad):
    with pytest.raises(InvalidArgumentError):
        get_index_keys({"a": bad})
    with pytest.raises(InvalidArgumentError):
        get_index_keys(None, {"a": bad})
    with pytest.raises(InvalidArgumentError):
        count_index_keys({"a": bad}, False)


def test_count_index_fields_required():
    with pytest.raises(InvalidArgumentError):
        count_index_keys(None, True)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# ensure_get_index
# ---------------------------------------------------------------------------


async def test_ensure_get_index_creates_both_indexes(store, manager):
    await manager.ensure_get_index({"type": 1, "boo": -1}, {"another.sub": 1})
    keys = await _keys(store)
    assert len(keys) == 3  # _id_ plus two
    assert keys[1] == (
        ("running", 1),
        ("payload.type", 1),
        ("payload.boo", -1),
        ("priority", 1),
        ("created", 1),
        ("payload.another.sub", 1),
        ("earliestGet", 1),
    )
    assert keys[2] == STUCK_INDEX_KEYS


async def test_ensure_get_index_is_idempotent(store, manager):
    await manager.ensure_get_index({"type": 1})
    await manager.ensure_get_index({"type": 1})
    assert len(await _keys(store)) == 3


async def test_ensure_get_index_with_no_args(store, manager):
    await manager.ensure_get_index()
    keys = await _keys(store)
    assert keys[1] == get_index_keys()
    assert keys[2] == STUCK_INDEX_KEYS


async def test_ensure_get_index_bad_value_touches_nothing(store, manager):
    with pytest.raises(InvalidArgumentError):
        await manager.ensure_get_index({"type": 3})
    assert len(await _keys(store)) == 1


# ---------------------------------------------------------------------------
# ensure_count_index
# ---------------------------------------------------------------------------


async def test_ensure_count_index(store, manager):
    await manager.ensure_count_index({"type": 1, "boo": -1}, False)
    await manager.ensure_count_index({"type": 1, "boo": -1}, True)
    keys = await _keys(store)
    assert keys[1:] == [
        (("payload.type", 1), ("payload.boo", -1)),
        (("running", 1), ("payload.type", 1), ("payload.boo", -1)),
    ]


async def test_prefix_of_existing_index_is_noop(store, manager):
    await manager.ensure_count_index({"a": 1, "b": -1}, False)
    await manager.ensure_count_index({"a": 1}, False)
    assert len(await _keys(store)) == 2


async def test_prefix_with_different_direction_is_created(store, manager):
    await manager.ensure_count_index({"a": 1, "b": -1}, False)
    await manager.ensure_count_index({"a": -1}, False)
    assert len(await _keys(store)) == 3


async def test_count_index_covered_by_get_index(store, manager):
    await manager.ensure_get_index()
    await manager.ensure_count_index({}, True)
    assert len(await _keys(store)) == 3


# ---------------------------------------------------------------------------
# Name handling and retries
# ---------------------------------------------------------------------------


async def test_long_names_are_shortened_until_accepted():
    store = InMemoryDocumentStore(max_index_name_length=10)
    manager = IndexManager(store=store)
    await manager.ensure_get_index()
    indexes = await store.list_indexes()
    assert len(indexes) == 3
    assert all(len(index.name) <= 10 for index in indexes)


async def test_existing_exact_index_under_other_name_is_reused():
    store = InMemoryDocumentStore()
    manager = IndexManager(store=store)
    await store.create_index((("payload.a", 1), ("payload.b", 1)), "existing")
    await manager.ensure((("payload.a", 1), ("payload.b", 1)))
    assert len(await store.list_indexes()) == 2


async def test_name_taken_by_other_keys_is_shortened():
    store = InMemoryDocumentStore()
    await store.create_index((("payload.x", 1),), "taken")
    manager = IndexManager(store=store)

    with patch("docqueue.core.indexes.uuid.uuid4", return_value="taken"):
        await manager.ensure((("payload.a", 1),))

    indexes = await store.list_indexes()
    assert indexes[-1] == IndexInfo(name="take", keys=(("payload.a", 1),))


async def test_gives_up_after_configured_attempts():
    store = AsyncMock()
    store.list_indexes.return_value = [IndexInfo(name="_id_", keys=(("_id", 1),))]
    store.create_index.side_effect = StorageError("rejected", RuntimeError("nope"))
    manager = IndexManager(store=store, attempts=2)

    with pytest.raises(IndexCreationError) as exc_info:
        await manager.ensure((("payload.a", 1),))

    assert exc_info.value.attempts == 2
    # uuid4 strings are 36 characters; each attempt walks the name down to ""
    assert store.create_index.await_count == 2 * 36


async def test_unexpected_store_errors_propagate():
    store = AsyncMock()
    store.list_indexes.side_effect = RuntimeError("connection reset")
    manager = IndexManager(store=store)
    with pytest.raises(RuntimeError):
        await manager.ensure_count_index({"a": 1}, False)
