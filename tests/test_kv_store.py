"""Tests for the durable key-value stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from quillmark.analysis.errors import StorageError
from quillmark.services.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore


class TestInMemoryKeyValueStore:
    """Tests for InMemoryKeyValueStore."""

    @pytest.mark.asyncio
    async def test_set_and_get(self) -> None:
        store = InMemoryKeyValueStore()
        await store.set("k", {"a": 1})
        assert await store.get("k") == {"a": 1}
        assert await store.get("missing") is None
        assert isinstance(store, KeyValueStore)

    @pytest.mark.asyncio
    async def test_get_returns_a_copy(self) -> None:
        store = InMemoryKeyValueStore()
        await store.set("k", {"nested": {"a": 1}})
        value = await store.get("k")
        assert value is not None
        value["nested"]["a"] = 2
        assert await store.get("k") == {"nested": {"a": 1}}

    @pytest.mark.asyncio
    async def test_merge_keeps_existing_fields(self) -> None:
        store = InMemoryKeyValueStore()
        await store.set("k", {"a": 1, "b": 2})
        await store.set("k", {"b": 3, "c": 4}, merge=True)
        assert await store.get("k") == {"a": 1, "b": 3, "c": 4}

    @pytest.mark.asyncio
    async def test_ttl_expires_records(self, clock) -> None:
        store = InMemoryKeyValueStore(clock=clock)
        await store.set("k", {"a": 1}, ttl_seconds=10)
        clock.advance(9)
        assert await store.get("k") == {"a": 1}
        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_where(self) -> None:
        store = InMemoryKeyValueStore()
        for index in range(5):
            await store.set(f"k{index}", {"n": index})
        removed = await store.delete_where(lambda key, record: record["n"] % 2 == 0)
        assert removed == 3
        assert sorted(store.keys()) == ["k1", "k3"]

    @pytest.mark.asyncio
    async def test_unavailable_store_raises(self) -> None:
        store = InMemoryKeyValueStore()
        store.available = False
        with pytest.raises(StorageError):
            await store.get("k")
        with pytest.raises(StorageError):
            await store.set("k", {})


class TestJsonFileKeyValueStore:
    """Tests for JsonFileKeyValueStore."""

    @pytest.mark.asyncio
    async def test_persists_between_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        await JsonFileKeyValueStore(path).set("k", {"a": 1})
        assert await JsonFileKeyValueStore(path).get("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_merge_and_delete(self, tmp_path: Path) -> None:
        store = JsonFileKeyValueStore(tmp_path / "store.json")
        await store.set("k", {"a": 1})
        await store.set("k", {"b": 2}, merge=True)
        assert await store.get("k") == {"a": 1, "b": 2}
        assert await store.delete("k") is True
        assert await store.delete("k") is False

    @pytest.mark.asyncio
    async def test_delete_where_sees_values(self, tmp_path: Path) -> None:
        store = JsonFileKeyValueStore(tmp_path / "store.json")
        await store.set("keep", {"stale": False})
        await store.set("drop", {"stale": True})
        assert await store.delete_where(lambda key, record: record.get("stale") is True) == 1
        assert await store.get("keep") == {"stale": False}

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            await JsonFileKeyValueStore(path).get("k")
