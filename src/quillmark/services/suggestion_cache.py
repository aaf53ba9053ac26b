"""Two-tier cache of analysis results keyed by content hash.

Lookups consult a bounded in-process LRU first and fall back to the durable
key-value store, promoting durable hits into memory. Entries carry their own
TTL and are never served once older than it. Storage failures degrade to a
miss (reads) or a no-op (writes); the cache never raises to its caller.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..analysis.errors import StorageError
from ..analysis.models import AnalysisResult
from .kv_store import KeyValueStore

__all__ = [
    "CacheEntry",
    "SuggestionCache",
    "SuggestionCacheConfig",
    "SuggestionCacheStats",
]

LOGGER = logging.getLogger(__name__)

TelemetryEmitter = Callable[[str, Mapping[str, Any]], None]


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class SuggestionCacheConfig:
    """Configuration for :class:`SuggestionCache`.

    Attributes:
        ttl_seconds: Default lifetime of a cached result.
        memory_max_entries: Capacity of the in-process LRU tier.
        memory_ttl_seconds: How long an entry may live in memory before the
            durable tier is consulted again.
        key_prefix: Namespace applied to durable keys.
    """

    ttl_seconds: float = 24 * 60 * 60
    memory_max_entries: int = 100
    memory_ttl_seconds: float = 5 * 60
    key_prefix: str = "analysis_cache:"


# -----------------------------------------------------------------------------
# Entries / stats
# -----------------------------------------------------------------------------

@dataclass(slots=True)
class CacheEntry:
    """A cached result with the bookkeeping needed for TTL checks."""

    key: str
    result: AnalysisResult
    cached_at: float
    ttl_seconds: float
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.cached_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds

    def to_record(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "result": self.result.to_dict(),
            "cached_at": self.cached_at,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_record(cls, key: str, record: Mapping[str, Any], *, stored_at: float) -> CacheEntry:
        return cls(
            key=key,
            result=AnalysisResult.from_dict(record["result"]),
            cached_at=float(record["cached_at"]),
            ttl_seconds=float(record["ttl_seconds"]),
            stored_at=stored_at,
        )


@dataclass(slots=True)
class SuggestionCacheStats:
    hits: int = 0
    misses: int = 0
    memory_hits: int = 0
    durable_hits: int = 0
    expirations: int = 0
    evictions: int = 0
    errors: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "memory_hits": self.memory_hits,
            "durable_hits": self.durable_hits,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "errors": self.errors,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }


# -----------------------------------------------------------------------------
# Cache
# -----------------------------------------------------------------------------

class SuggestionCache:
    """Memory LRU in front of a durable store, keyed by content hash."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        config: SuggestionCacheConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
        telemetry_emitter: TelemetryEmitter | None = None,
    ) -> None:
        self._store = store
        self._config = config or SuggestionCacheConfig()
        self._clock = clock or time.time
        self._telemetry_emitter = telemetry_emitter
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = SuggestionCacheStats()

    @property
    def config(self) -> SuggestionCacheConfig:
        return self._config

    @property
    def stats(self) -> SuggestionCacheStats:
        return self._stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def get(self, key: str) -> AnalysisResult | None:
        """Return the cached result for ``key`` or ``None`` on miss/expiry/error."""

        now = self._clock()
        entry = self._memory_get(key, now)
        if entry is not None:
            self._record_hit(key, "memory")
            return entry.result

        record = await self._durable_get(key)
        if record is None:
            self._record_miss(key)
            return None
        try:
            entry = CacheEntry.from_record(key, record, stored_at=now)
        except (AttributeError, KeyError, TypeError, ValueError):
            LOGGER.warning("Discarding malformed cache record for %s", key[:12], exc_info=True)
            self._stats.errors += 1
            self._record_miss(key)
            return None
        if entry.is_expired(now):
            # Left in place; purge_expired() removes it in bulk later.
            self._stats.expirations += 1
            self._record_miss(key)
            return None
        self._memory_put(entry)
        self._record_hit(key, "durable")
        return entry.result

    async def set(self, key: str, result: AnalysisResult, ttl_seconds: float | None = None) -> None:
        """Store ``result`` in both tiers; durable failures are logged and ignored."""

        now = self._clock()
        ttl = self._config.ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        entry = CacheEntry(key=key, result=result, cached_at=now, ttl_seconds=ttl, stored_at=now)
        self._memory_put(entry)
        if self._store is None:
            return
        try:
            await self._store.set(self._durable_key(key), entry.to_record(), merge=True)
        except StorageError as exc:
            self._stats.errors += 1
            LOGGER.warning("Cache write for %s skipped: %s", key[:12], exc)

    def invalidate(self, key: str) -> bool:
        """Drop ``key`` from the memory tier."""

        with self._lock:
            return self._memory.pop(key, None) is not None

    def clear_memory(self) -> None:
        with self._lock:
            self._memory.clear()

    async def purge_expired(self) -> int:
        """Delete expired entries from both tiers and return how many durable records went."""

        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._memory.items() if entry.is_expired(now)]
            for key in stale:
                del self._memory[key]
        if self._store is None:
            return 0
        prefix = self._config.key_prefix

        def _expired(key: str, record: Mapping[str, Any]) -> bool:
            if not key.startswith(prefix):
                return False
            try:
                return now - float(record["cached_at"]) > float(record["ttl_seconds"])
            except (KeyError, TypeError, ValueError):
                return True

        try:
            removed = await self._store.delete_where(_expired)
        except StorageError as exc:
            self._stats.errors += 1
            LOGGER.warning("Cache purge skipped: %s", exc)
            return 0
        if removed:
            LOGGER.debug("Purged %d expired cache record(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Memory tier
    # ------------------------------------------------------------------
    def _memory_get(self, key: str, now: float) -> CacheEntry | None:
        with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._memory[key]
                self._stats.expirations += 1
                return None
            if now - entry.stored_at > self._config.memory_ttl_seconds:
                del self._memory[key]
                return None
            self._memory.move_to_end(key)
            return entry

    def _memory_put(self, entry: CacheEntry) -> None:
        with self._lock:
            if entry.key in self._memory:
                self._memory[entry.key] = entry
                self._memory.move_to_end(entry.key)
                return
            while len(self._memory) >= max(1, self._config.memory_max_entries):
                evicted, _ = self._memory.popitem(last=False)
                self._stats.evictions += 1
                LOGGER.debug("Evicted cache entry for %s", evicted[:12])
            self._memory[entry.key] = entry

    # ------------------------------------------------------------------
    # Durable tier
    # ------------------------------------------------------------------
    async def _durable_get(self, key: str) -> Mapping[str, Any] | None:
        if self._store is None:
            return None
        try:
            return await self._store.get(self._durable_key(key))
        except StorageError as exc:
            self._stats.errors += 1
            LOGGER.warning("Cache read for %s treated as miss: %s", key[:12], exc)
            return None

    def _durable_key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    # ------------------------------------------------------------------
    # Stats / telemetry
    # ------------------------------------------------------------------
    def _record_hit(self, key: str, tier: str) -> None:
        self._stats.hits += 1
        if tier == "memory":
            self._stats.memory_hits += 1
        else:
            self._stats.durable_hits += 1
        LOGGER.debug("Cache hit (%s) for %s", tier, key[:12])
        self._emit("cache.hit", {"tier": tier, "key": key[:12]})

    def _record_miss(self, key: str) -> None:
        self._stats.misses += 1
        self._emit("cache.miss", {"key": key[:12]})

    def _emit(self, name: str, payload: Mapping[str, Any]) -> None:
        emitter = self._telemetry_emitter
        if emitter is None:
            return
        try:
            emitter(name, dict(payload))
        except Exception:  # pragma: no cover - telemetry must not break callers
            LOGGER.debug("Cache telemetry emitter failed", exc_info=True)
