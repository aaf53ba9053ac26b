"""Durable key-value stores backing the suggestion cache and quota tracker."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from ..analysis.errors import StorageError

__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "RecordPredicate",
]

LOGGER = logging.getLogger(__name__)

RecordPredicate = Callable[[str, Mapping[str, Any]], bool]


@runtime_checkable
class KeyValueStore(Protocol):
    """Asynchronous document store keyed by string.

    Implementations raise :class:`StorageError` when the backing store is
    unreachable. Values are JSON-compatible mappings.
    """

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(
        self,
        key: str,
        value: Mapping[str, Any],
        ttl_seconds: float | None = None,
        *,
        merge: bool = False,
    ) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_where(self, predicate: RecordPredicate) -> int: ...


class InMemoryKeyValueStore:
    """Process-local store, primarily for tests and single-process hosts.

    Setting :attr:`available` to ``False`` makes every operation raise
    :class:`StorageError`, which is how callers exercise their degraded paths.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._expiry: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or time.time
        self.available = True
        self.writes = 0

    async def get(self, key: str) -> dict[str, Any] | None:
        self._ensure_available()
        async with self._lock:
            expires_at = self._expiry.get(key)
            if expires_at is not None and self._clock() >= expires_at:
                self._records.pop(key, None)
                self._expiry.pop(key, None)
                return None
            record = self._records.get(key)
            return json.loads(json.dumps(record)) if record is not None else None

    async def set(
        self,
        key: str,
        value: Mapping[str, Any],
        ttl_seconds: float | None = None,
        *,
        merge: bool = False,
    ) -> None:
        self._ensure_available()
        payload = json.loads(json.dumps(dict(value)))
        async with self._lock:
            if merge and key in self._records:
                merged = dict(self._records[key])
                merged.update(payload)
                payload = merged
            self._records[key] = payload
            if ttl_seconds is not None:
                self._expiry[key] = self._clock() + ttl_seconds
            else:
                self._expiry.pop(key, None)
            self.writes += 1

    async def delete(self, key: str) -> bool:
        self._ensure_available()
        async with self._lock:
            self._expiry.pop(key, None)
            return self._records.pop(key, None) is not None

    async def delete_where(self, predicate: RecordPredicate) -> int:
        self._ensure_available()
        async with self._lock:
            doomed = [key for key, record in self._records.items() if predicate(key, record)]
            for key in doomed:
                self._records.pop(key, None)
                self._expiry.pop(key, None)
            return len(doomed)

    def keys(self) -> list[str]:
        return list(self._records)

    def _ensure_available(self) -> None:
        if not self.available:
            raise StorageError(message="In-memory store marked unavailable")


class JsonFileKeyValueStore:
    """Store persisting every record in a single JSON file with atomic writes."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            records = await asyncio.to_thread(self._read)
        entry = records.get(key)
        if entry is None:
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and time.time() >= float(expires_at):
            return None
        return dict(entry.get("value") or {})

    async def set(
        self,
        key: str,
        value: Mapping[str, Any],
        ttl_seconds: float | None = None,
        *,
        merge: bool = False,
    ) -> None:
        async with self._lock:
            records = await asyncio.to_thread(self._read)
            payload = dict(value)
            existing = records.get(key)
            if merge and existing is not None:
                merged = dict(existing.get("value") or {})
                merged.update(payload)
                payload = merged
            records[key] = {
                "value": payload,
                "expires_at": time.time() + ttl_seconds if ttl_seconds is not None else None,
            }
            await asyncio.to_thread(self._write, records)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            records = await asyncio.to_thread(self._read)
            if records.pop(key, None) is None:
                return False
            await asyncio.to_thread(self._write, records)
            return True

    async def delete_where(self, predicate: RecordPredicate) -> int:
        async with self._lock:
            records = await asyncio.to_thread(self._read)
            doomed = [key for key, entry in records.items() if predicate(key, entry.get("value") or {})]
            if not doomed:
                return 0
            for key in doomed:
                records.pop(key, None)
            await asyncio.to_thread(self._write, records)
            return len(doomed)

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(message=f"Unable to read {self._path}: {exc}") from exc
        if not text.strip():
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(message=f"Store file {self._path} is not valid JSON") from exc
        return payload if isinstance(payload, dict) else {}

    def _write(self, records: Mapping[str, Any]) -> None:
        body = json.dumps(records, indent=2, sort_keys=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(body, encoding="utf-8")
            if os.name != "nt":  # pragma: no cover - depends on OS
                os.chmod(tmp_path, 0o600)
            tmp_path.replace(self._path)
        except OSError as exc:
            raise StorageError(message=f"Unable to write {self._path}: {exc}") from exc
        LOGGER.debug("Persisted %d record(s) to %s", len(records), self._path)
