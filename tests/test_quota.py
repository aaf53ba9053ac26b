"""Tests for :mod:`quillmark.services.quota`."""

from __future__ import annotations

import asyncio

import pytest

from quillmark.analysis.errors import QuotaExceeded
from quillmark.services.kv_store import InMemoryKeyValueStore
from quillmark.services.quota import QuotaConfig, QuotaTracker


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def store(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


def make_tracker(store, clock, **overrides) -> QuotaTracker:
    config = QuotaConfig(
        max_requests=overrides.pop("max_requests", 3),
        max_characters=overrides.pop("max_characters", 1_000),
        window_seconds=overrides.pop("window_seconds", 3600),
        flush_delay_seconds=overrides.pop("flush_delay_seconds", 0.01),
        **overrides,
    )
    return QuotaTracker(store, config, clock=clock)


# =============================================================================
# Limits
# =============================================================================


class TestQuotaLimits:
    """Tests for request and character limits."""

    def test_realtime_limits_are_derived(self) -> None:
        config = QuotaConfig(max_requests=100, max_characters=1_000_000)
        assert config.limits(realtime=False) == (100, 1_000_000)
        assert config.limits(realtime=True) == (150, 500_000)

    @pytest.mark.asyncio
    async def test_denies_after_max_requests(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        for _ in range(3):
            assert (await tracker.check_and_consume("alice", 10)).allowed

        clock.advance(600)
        decision = await tracker.check_and_consume("alice", 10)

        assert decision.allowed is False
        assert decision.reason == "request_limit"
        assert decision.retry_after_seconds == 3000
        assert decision.remaining_requests == 0

    @pytest.mark.asyncio
    async def test_window_reset_allows_again(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        for _ in range(3):
            await tracker.check_and_consume("alice", 10)
        assert not (await tracker.check_and_consume("alice", 10)).allowed

        clock.advance(3600)
        decision = await tracker.check_and_consume("alice", 10)

        assert decision.allowed is True
        assert decision.remaining_requests == 2

    @pytest.mark.asyncio
    async def test_character_limit(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        assert (await tracker.check_and_consume("alice", 900)).allowed
        decision = await tracker.check_and_consume("alice", 200)
        assert decision.allowed is False
        assert decision.reason == "character_limit"
        assert decision.remaining_characters == 100

    @pytest.mark.asyncio
    async def test_retry_after_is_at_least_one_second(self, store, clock) -> None:
        tracker = make_tracker(store, clock, max_requests=1)
        await tracker.check_and_consume("alice", 1)
        clock.advance(3599.9)
        decision = await tracker.check_and_consume("alice", 1)
        assert decision.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, store, clock) -> None:
        tracker = make_tracker(store, clock, max_requests=1)
        assert (await tracker.check_and_consume("alice", 1)).allowed
        assert (await tracker.check_and_consume("bob", 1)).allowed
        assert not (await tracker.check_and_consume("alice", 1)).allowed

    @pytest.mark.asyncio
    async def test_realtime_tier_has_more_requests_fewer_characters(self, store, clock) -> None:
        tracker = make_tracker(store, clock, max_requests=2, max_characters=100)
        results = [await tracker.check_and_consume("alice", 10, realtime=True) for _ in range(4)]
        assert [item.allowed for item in results] == [True, True, True, False]

        other = await tracker.check_and_consume("bob", 60, realtime=True)
        assert other.allowed is False
        assert other.reason == "character_limit"
        await tracker.aclose()

    @pytest.mark.asyncio
    async def test_decision_converts_to_error(self, store, clock) -> None:
        tracker = make_tracker(store, clock, max_requests=1)
        await tracker.check_and_consume("alice", 1)
        error = (await tracker.check_and_consume("alice", 1)).to_error()
        assert isinstance(error, QuotaExceeded)
        assert error.retry_after == 3600


# =============================================================================
# Persistence
# =============================================================================


class TestQuotaPersistence:
    """Tests for write batching and durable state."""

    @pytest.mark.asyncio
    async def test_full_tier_flushes_immediately(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        await tracker.check_and_consume("alice", 10)
        record = await store.get("rate_limit:alice")
        assert record is not None
        assert record["request_count"] == 1
        assert record["character_count"] == 10

    @pytest.mark.asyncio
    async def test_realtime_writes_are_coalesced(self, store, clock) -> None:
        tracker = make_tracker(store, clock, max_requests=10, flush_delay_seconds=0.05)
        for _ in range(5):
            await tracker.check_and_consume("alice", 1, realtime=True)

        assert store.writes == 0
        assert tracker.pending_flushes() == 1
        assert tracker.is_dirty("alice")

        await asyncio.sleep(0.1)

        assert store.writes == 1
        assert tracker.pending_flushes() == 0
        assert not tracker.is_dirty("alice")
        record = await store.get("rate_limit:alice")
        assert record is not None and record["request_count"] == 5

    @pytest.mark.asyncio
    async def test_aclose_flushes_pending_increments(self, store, clock) -> None:
        tracker = make_tracker(store, clock, flush_delay_seconds=60)
        await tracker.check_and_consume("alice", 7, realtime=True)
        await tracker.aclose()
        record = await store.get("rate_limit:alice")
        assert record is not None and record["character_count"] == 7

    @pytest.mark.asyncio
    async def test_state_survives_new_tracker(self, store, clock) -> None:
        first = make_tracker(store, clock, max_requests=2)
        await first.check_and_consume("alice", 1)
        await first.check_and_consume("alice", 1)

        second = make_tracker(store, clock, max_requests=2)
        assert not (await second.check_and_consume("alice", 1)).allowed

    @pytest.mark.asyncio
    async def test_status_does_not_consume(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        await tracker.check_and_consume("alice", 25)
        status = await tracker.status("alice")
        again = await tracker.status("alice")
        assert status == again
        assert status.requests_used == 1
        assert status.requests_remaining == 2
        assert status.characters_remaining == 975
        assert status.reset_at == clock.now + 3600

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        await tracker.check_and_consume("old", 1)
        clock.advance(2 * 24 * 3600)
        await tracker.check_and_consume("new", 1)
        await store.set("unrelated", {"last_request_at": 0})

        removed = await tracker.cleanup_expired()

        assert removed == 1
        assert sorted(store.keys()) == ["rate_limit:new", "unrelated"]
        assert sorted(tracker._locks) == ["new"]


# =============================================================================
# Degraded storage
# =============================================================================


class TestQuotaFailOpen:
    """The tracker allows requests when its store is unreachable."""

    @pytest.mark.asyncio
    async def test_unavailable_store_allows(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        store.available = False
        decision = await tracker.check_and_consume("alice", 10)
        assert decision.allowed is True
        assert decision.degraded is True
        assert decision.reason == "storage_unavailable"

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_record_dirty(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        await tracker.check_and_consume("alice", 10)
        store.available = False
        decision = await tracker.check_and_consume("alice", 10)
        assert decision.allowed is True
        assert tracker.is_dirty("alice")

        store.available = True
        await tracker.flush()
        record = await store.get("rate_limit:alice")
        assert record is not None and record["request_count"] == 2

    @pytest.mark.asyncio
    async def test_status_when_store_unavailable(self, store, clock) -> None:
        tracker = make_tracker(store, clock)
        store.available = False
        status = await tracker.status("alice")
        assert status.degraded is True
        assert status.requests_remaining == 3
