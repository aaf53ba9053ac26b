"""Sliding-window quota tracking per identity.

Each identity owns one :class:`QuotaRecord` holding the start of its current
window plus request and character counters. Full analyses use the base limits;
realtime analyses get a larger request allowance but a smaller character
allowance from the same window.

Records are cached in memory for a short period. Realtime increments are
written back on a coalesced, delayed flush; full-analysis increments are
written immediately. When the durable store is unreachable the tracker
allows the request and logs the degradation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..analysis.errors import QuotaExceeded, StorageError
from .kv_store import KeyValueStore

__all__ = [
    "QuotaConfig",
    "QuotaDecision",
    "QuotaRecord",
    "QuotaStatus",
    "QuotaTracker",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Configuration / records
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class QuotaConfig:
    """Quota limits and caching behaviour.

    Attributes:
        max_requests: Requests allowed per window for full analyses.
        max_characters: Characters allowed per window for full analyses.
        window_seconds: Length of the quota window.
        realtime_request_multiplier: Scales ``max_requests`` for realtime calls.
        realtime_character_multiplier: Scales ``max_characters`` for realtime calls.
        cache_ttl_seconds: How long a clean record is served from memory.
        flush_delay_seconds: Delay before realtime increments are persisted.
        key_prefix: Namespace applied to durable keys.
    """

    max_requests: int = 100
    max_characters: int = 1_000_000
    window_seconds: float = 60 * 60
    realtime_request_multiplier: float = 1.5
    realtime_character_multiplier: float = 0.5
    cache_ttl_seconds: float = 5 * 60
    flush_delay_seconds: float = 30.0
    key_prefix: str = "rate_limit:"

    def limits(self, *, realtime: bool) -> tuple[int, int]:
        """Return ``(request_limit, character_limit)`` for the tier."""

        if not realtime:
            return self.max_requests, self.max_characters
        return (
            math.floor(self.max_requests * self.realtime_request_multiplier),
            math.floor(self.max_characters * self.realtime_character_multiplier),
        )


@dataclass(slots=True)
class QuotaRecord:
    identity: str
    window_start: float
    request_count: int = 0
    character_count: int = 0
    last_request_at: float = 0.0

    def reset(self, now: float) -> None:
        self.window_start = now
        self.request_count = 0
        self.character_count = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "window_start": self.window_start,
            "request_count": self.request_count,
            "character_count": self.character_count,
            "last_request_at": self.last_request_at,
        }

    @classmethod
    def from_dict(cls, identity: str, payload: Mapping[str, Any]) -> QuotaRecord:
        return cls(
            identity=identity,
            window_start=float(payload["window_start"]),
            request_count=int(payload.get("request_count", 0)),
            character_count=int(payload.get("character_count", 0)),
            last_request_at=float(payload.get("last_request_at", 0.0)),
        )


@dataclass(slots=True, frozen=True)
class QuotaDecision:
    """Outcome of :meth:`QuotaTracker.check_and_consume`."""

    allowed: bool
    retry_after_seconds: int | None = None
    reason: str | None = None
    degraded: bool = False
    remaining_requests: int | None = None
    remaining_characters: int | None = None

    def to_error(self) -> QuotaExceeded:
        return QuotaExceeded(
            message=f"Rate limit exceeded ({self.reason or 'quota'})",
            retry_after=self.retry_after_seconds,
            details={"reason": self.reason},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "retry_after_seconds": self.retry_after_seconds,
            "reason": self.reason,
            "degraded": self.degraded,
            "remaining_requests": self.remaining_requests,
            "remaining_characters": self.remaining_characters,
        }


@dataclass(slots=True, frozen=True)
class QuotaStatus:
    identity: str
    requests_used: int
    requests_remaining: int
    characters_used: int
    characters_remaining: int
    reset_at: float
    degraded: bool = False


@dataclass(slots=True)
class _CachedRecord:
    record: QuotaRecord
    loaded_at: float
    dirty: bool = False


# -----------------------------------------------------------------------------
# Tracker
# -----------------------------------------------------------------------------

class QuotaTracker:
    """Per-identity request and character accounting over a fixed window."""

    def __init__(
        self,
        store: KeyValueStore,
        config: QuotaConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._config = config or QuotaConfig()
        self._clock = clock or time.time
        self._records: dict[str, _CachedRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._flush_tasks: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def config(self) -> QuotaConfig:
        return self._config

    def pending_flushes(self) -> int:
        return sum(1 for task in self._flush_tasks.values() if not task.done())

    def is_dirty(self, identity: str) -> bool:
        cached = self._records.get(identity)
        return bool(cached and cached.dirty)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def check_and_consume(self, identity: str, cost: int, *, realtime: bool = False) -> QuotaDecision:
        """Consume one request and ``cost`` characters, or deny with a retry delay."""

        cost = max(0, int(cost))
        async with self._lock_for(identity):
            now = self._clock()
            try:
                cached = await self._load(identity, now)
            except StorageError as exc:
                LOGGER.warning("Quota store unavailable for %s; allowing request: %s", identity, exc)
                return QuotaDecision(allowed=True, reason="storage_unavailable", degraded=True)

            record = cached.record
            window = self._config.window_seconds
            if now - record.window_start >= window:
                record.reset(now)
                cached.dirty = True

            request_limit, character_limit = self._config.limits(realtime=realtime)
            reason: str | None = None
            if record.request_count >= request_limit:
                reason = "request_limit"
            elif record.character_count + cost > character_limit:
                reason = "character_limit"
            if reason is not None:
                retry_after = max(1, math.ceil(record.window_start + window - now))
                LOGGER.info(
                    "Quota denied for %s (%s); retry in %ss", identity, reason, retry_after
                )
                return QuotaDecision(
                    allowed=False,
                    retry_after_seconds=retry_after,
                    reason=reason,
                    remaining_requests=max(0, request_limit - record.request_count),
                    remaining_characters=max(0, character_limit - record.character_count),
                )

            record.request_count += 1
            record.character_count += cost
            record.last_request_at = now
            cached.dirty = True
            if realtime:
                self._schedule_flush(identity)
            else:
                await self._flush_locked(identity)
            return QuotaDecision(
                allowed=True,
                remaining_requests=request_limit - record.request_count,
                remaining_characters=character_limit - record.character_count,
            )

    async def status(self, identity: str, *, realtime: bool = False) -> QuotaStatus:
        """Return current usage for ``identity`` without consuming anything."""

        request_limit, character_limit = self._config.limits(realtime=realtime)
        async with self._lock_for(identity):
            now = self._clock()
            try:
                cached = await self._load(identity, now)
            except StorageError as exc:
                LOGGER.warning("Quota status unavailable for %s: %s", identity, exc)
                return QuotaStatus(
                    identity=identity,
                    requests_used=0,
                    requests_remaining=request_limit,
                    characters_used=0,
                    characters_remaining=character_limit,
                    reset_at=now + self._config.window_seconds,
                    degraded=True,
                )
            record = cached.record
            if now - record.window_start >= self._config.window_seconds:
                requests_used, characters_used, window_start = 0, 0, now
            else:
                requests_used = record.request_count
                characters_used = record.character_count
                window_start = record.window_start
            return QuotaStatus(
                identity=identity,
                requests_used=requests_used,
                requests_remaining=max(0, request_limit - requests_used),
                characters_used=characters_used,
                characters_remaining=max(0, character_limit - characters_used),
                reset_at=window_start + self._config.window_seconds,
            )

    async def cleanup_expired(self, older_than_seconds: float = 24 * 60 * 60) -> int:
        """Delete records whose last request predates the cutoff."""

        cutoff = self._clock() - older_than_seconds
        prefix = self._config.key_prefix
        for identity in [key for key, cached in self._records.items() if cached.record.last_request_at < cutoff]:
            if not self._records[identity].dirty:
                del self._records[identity]
        for identity in [key for key, lock in self._locks.items() if key not in self._records and not lock.locked()]:
            del self._locks[identity]

        def _stale(key: str, record: Mapping[str, Any]) -> bool:
            if not key.startswith(prefix):
                return False
            try:
                return float(record.get("last_request_at", 0.0)) < cutoff
            except (TypeError, ValueError):
                return True

        try:
            removed = await self._store.delete_where(_stale)
        except StorageError as exc:
            LOGGER.warning("Quota cleanup skipped: %s", exc)
            return 0
        LOGGER.info("Cleaned up %d expired quota record(s)", removed)
        return removed

    async def flush(self) -> None:
        """Persist every dirty record now."""

        for identity in list(self._records):
            async with self._lock_for(identity):
                await self._flush_locked(identity)

    async def aclose(self) -> None:
        """Cancel pending timers and persist outstanding increments."""

        self._closed = True
        tasks = list(self._flush_tasks.values())
        self._flush_tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[identity] = lock
        return lock

    async def _load(self, identity: str, now: float) -> _CachedRecord:
        cached = self._records.get(identity)
        if cached is not None and (cached.dirty or now - cached.loaded_at <= self._config.cache_ttl_seconds):
            return cached
        payload = await self._store.get(self._key(identity))
        record: QuotaRecord | None = None
        if payload is not None:
            try:
                record = QuotaRecord.from_dict(identity, payload)
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Ignoring malformed quota record for %s", identity)
        if record is None:
            record = QuotaRecord(identity=identity, window_start=now)
        cached = _CachedRecord(record=record, loaded_at=now)
        self._records[identity] = cached
        return cached

    async def _flush_locked(self, identity: str) -> None:
        cached = self._records.get(identity)
        if cached is None or not cached.dirty:
            return
        try:
            await self._store.set(self._key(identity), cached.record.to_dict())
        except StorageError as exc:
            LOGGER.warning("Quota flush for %s failed; will retry later: %s", identity, exc)
            return
        cached.dirty = False
        cached.loaded_at = self._clock()

    def _schedule_flush(self, identity: str) -> None:
        if self._closed:
            return
        existing = self._flush_tasks.get(identity)
        if existing is not None and not existing.done():
            return
        self._flush_tasks[identity] = asyncio.create_task(self._delayed_flush(identity))

    async def _delayed_flush(self, identity: str) -> None:
        try:
            await asyncio.sleep(self._config.flush_delay_seconds)
            async with self._lock_for(identity):
                await self._flush_locked(identity)
        finally:
            if self._flush_tasks.get(identity) is asyncio.current_task():
                self._flush_tasks.pop(identity, None)

    def _key(self, identity: str) -> str:
        return f"{self._config.key_prefix}{identity}"
