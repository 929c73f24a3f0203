import pytest
import pytest_asyncio

from mail_gate.errors import StorageUnavailableError
from mail_gate.history import (
    MemoryHistoryStore,
    SqliteHistoryStore,
    create_history_store,
)
from mail_gate.sql import SqliteAdapter, create_adapter


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    if request.param == "memory":
        backend = MemoryHistoryStore()
    else:
        backend = SqliteHistoryStore(str(tmp_path / "history.db"))
    await backend.init()
    yield backend
    await backend.close()


@pytest.mark.asyncio
async def test_append_and_load_in_order(store):
    await store.append("10.0.0.1", 100)
    await store.append("10.0.0.1", 200)
    await store.append("10.0.0.2", 150)
    assert await store.load("10.0.0.1") == [100, 200]
    assert await store.load("10.0.0.2") == [150]
    assert await store.load("unknown") == []


@pytest.mark.asyncio
async def test_prune_removes_entries_at_or_before_cutoff(store):
    for ts in (100, 200, 300):
        await store.append("10.0.0.1", ts)
    assert await store.prune("10.0.0.1", 200) == 2
    assert await store.load("10.0.0.1") == [300]
    assert await store.prune("10.0.0.1", 200) == 0


@pytest.mark.asyncio
async def test_prune_only_touches_one_identity(store):
    await store.append("10.0.0.1", 100)
    await store.append("10.0.0.2", 100)
    await store.prune("10.0.0.1", 500)
    assert await store.load("10.0.0.2") == [100]


@pytest.mark.asyncio
async def test_count_since_is_exclusive(store):
    for ts in (100, 200, 300):
        await store.append("10.0.0.1", ts)
    assert await store.count_since("10.0.0.1", 200) == 1
    assert await store.count_since("10.0.0.1", 99) == 3
    assert await store.count_since("nobody", 0) == 0


@pytest.mark.asyncio
async def test_memory_store_forgets_empty_identities():
    store = MemoryHistoryStore()
    await store.append("10.0.0.1", 100)
    assert "10.0.0.1" in store._history
    await store.prune("10.0.0.1", 100)
    assert "10.0.0.1" not in store._history


@pytest.mark.asyncio
async def test_sqlite_in_memory_keeps_data_between_calls():
    store = SqliteHistoryStore(":memory:")
    await store.init()
    try:
        await store.append("10.0.0.1", 100)
        assert await store.load("10.0.0.1") == [100]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_unopenable_database_raises_storage_error(tmp_path):
    # A directory cannot be opened as a database file.
    store = SqliteHistoryStore(str(tmp_path))
    with pytest.raises(StorageUnavailableError):
        await store.init()
    with pytest.raises(StorageUnavailableError):
        await store.load("10.0.0.1")
    with pytest.raises(StorageUnavailableError):
        await store.append("10.0.0.1", 100)


def test_create_history_store_selection(tmp_path):
    assert isinstance(create_history_store(None), MemoryHistoryStore)
    assert isinstance(create_history_store(""), MemoryHistoryStore)
    assert isinstance(create_history_store("memory"), MemoryHistoryStore)
    assert isinstance(create_history_store(str(tmp_path / "h.db")), SqliteHistoryStore)


def test_create_adapter_formats():
    assert create_adapter("/data/gate.db").db_path == "/data/gate.db"
    assert create_adapter("./gate.db").db_path == "./gate.db"
    assert create_adapter("gate.db").db_path == "gate.db"
    assert create_adapter(":memory:").in_memory
    assert create_adapter("sqlite::memory:").in_memory
    assert isinstance(create_adapter("sqlite:/tmp/gate.db"), SqliteAdapter)
    with pytest.raises(ValueError, match="Unknown database type"):
        create_adapter("postgresql://localhost/gate")
