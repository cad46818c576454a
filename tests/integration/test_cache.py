"""
Story Cache Tests

TTL expiry, tombstones, corruption handling, single-flight and
invalidation, over both storage backends.
"""

import asyncio
from datetime import timedelta

import pytest

from story_engine.cache import (
    CacheEntry, FileCacheBackend, InMemoryCacheBackend, StoryCache, StoryCacheConfig,
    cache_key, decode_entry, encode_entry
)
from story_engine.contracts.base import ArcType, Timestamp
from story_engine.contracts.errors import CacheCorruption
from story_engine.contracts.events import CurvePoint, NarrativeArc
from tests.integration.fixtures import ManualClock


def make_arc(arc_id="arc_0001", scope_key="E1", generated_at=None, ttl_hours=24):
    generated_at = generated_at or Timestamp.from_iso("2026-03-01T18:00:00Z")
    return NarrativeArc(
        id=arc_id,
        arc_type=ArcType.GAME_WINNING_RALLY,
        title="Game-Winning Rally: E1",
        description="test arc",
        scope_key=scope_key,
        photo_ids=("p1", "p2", "p3"),
        emotional_curve=(CurvePoint("p1", 7.0), CurvePoint("p2", 8.0), CurvePoint("p3", 9.5)),
        confidence=0.75,
        generated_at=generated_at,
        expires_at=Timestamp(value=generated_at.value + timedelta(hours=ttl_hours)),
        duration_seconds=9.0
    )


def make_entry(clock, scope_key="E1", arc=None, arc_type=ArcType.GAME_WINNING_RALLY, ttl_hours=24):
    now = clock()
    return CacheEntry(
        arc_type=arc_type,
        scope_key=scope_key,
        generated_at=now,
        expires_at=Timestamp(value=now.value + timedelta(hours=ttl_hours)),
        arc=arc
    )


@pytest.fixture(params=["memory", "file"])
def backend(request, tmp_path):
    if request.param == "file":
        return FileCacheBackend(str(tmp_path / "cache"))
    return InMemoryCacheBackend()


# =============================================================================
# CODEC
# =============================================================================

class TestEntryCodec:

    def test_arc_entry_survives_encoding(self):
        clock = ManualClock()
        entry = make_entry(clock, arc=make_arc(generated_at=clock()))
        assert decode_entry(encode_entry(entry)) == entry

    def test_tombstone_survives_encoding(self):
        entry = make_entry(ManualClock())
        decoded = decode_entry(encode_entry(entry))
        assert decoded.is_tombstone

    @pytest.mark.parametrize("payload", [
        "not json",
        "{}",
        '{"arcType": "no-such-type", "scopeKey": "E1", "generatedAt": "2026-03-01T18:00:00Z",'
        ' "expiresAt": "2026-03-02T18:00:00Z", "arc": null}',
        "[1, 2, 3]",
    ])
    def test_garbage_raises_cache_corruption(self, payload):
        with pytest.raises(CacheCorruption):
            decode_entry(payload)


# =============================================================================
# READS, EXPIRY, CORRUPTION
# =============================================================================

class TestStoryCache:

    def test_fresh_entry_is_served(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, arc=make_arc(generated_at=clock())))

        entry = cache.peek(ArcType.GAME_WINNING_RALLY, "E1")

        assert entry is not None
        assert entry.arc.id == "arc_0001"
        assert cache.stats.hits == 1

    def test_tombstone_is_a_hit_without_an_arc(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock))

        entry = cache.peek(ArcType.GAME_WINNING_RALLY, "E1")

        assert entry.is_tombstone
        assert cache.stats.tombstone_hits == 1

    def test_expired_entry_is_dropped(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, ttl_hours=1))

        clock.advance(hours=1)

        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is None
        assert backend.get(cache_key(ArcType.GAME_WINNING_RALLY, "E1")) is None
        assert cache.stats.expirations == 1

    def test_corrupt_entry_is_a_miss(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        backend.put(cache_key(ArcType.GAME_WINNING_RALLY, "E1"), "{truncated")

        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is None
        assert cache.stats.corruptions == 1
        assert backend.keys() == []

    def test_undecodable_file_is_a_miss(self, tmp_path):
        clock = ManualClock()
        cache_dir = tmp_path / "cache"
        backend = FileCacheBackend(str(cache_dir))
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, arc=make_arc(generated_at=clock())))
        (entry_file,) = list(cache_dir.iterdir())
        entry_file.write_bytes(b"\xff\xfe\x00garbage")

        assert cache.entries_for("E1") == []
        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is None
        assert cache.stats.corruptions == 1
        assert backend.keys() == []

    def test_evict_expired_sweeps_unrequested_scopes(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, scope_key="E1", ttl_hours=1))
        cache.put(make_entry(clock, scope_key="E2", ttl_hours=48))

        clock.advance(hours=2)

        assert cache.evict_expired() == 1
        assert cache.scope_keys() == {"E2"}

    def test_get_by_arc_id(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, arc=make_arc(generated_at=clock())))

        assert cache.get_by_arc_id("arc_0001").id == "arc_0001"
        assert cache.get_by_arc_id("arc_missing") is None

    def test_get_by_arc_id_after_restart_with_file_backend(self, tmp_path):
        clock = ManualClock()
        cache_dir = str(tmp_path / "cache")
        first = StoryCache(StoryCacheConfig(backend_type="file", cache_dir=cache_dir), clock=clock)
        first.put(make_entry(clock, arc=make_arc(generated_at=clock())))

        second = StoryCache(StoryCacheConfig(backend_type="file", cache_dir=cache_dir), clock=clock)

        assert second.get_by_arc_id("arc_0001") is not None

    def test_invalidate_drops_only_that_scope(self, backend):
        clock = ManualClock()
        cache = StoryCache(backend=backend, clock=clock)
        cache.put(make_entry(clock, scope_key="E1"))
        cache.put(make_entry(clock, scope_key="E1", arc_type=ArcType.EMOTION_SPECTRUM))
        cache.put(make_entry(clock, scope_key="E2"))

        assert cache.invalidate("E1") == 2
        assert cache.scope_keys() == {"E2"}


# =============================================================================
# SINGLE-FLIGHT
# =============================================================================

class TestSingleFlight:

    def test_concurrent_misses_share_one_computation(self):
        clock = ManualClock()
        cache = StoryCache(clock=clock)
        calls = []

        async def compute():
            calls.append(1)
            await asyncio.sleep(0.05)
            return make_entry(clock)

        async def scenario():
            return await asyncio.gather(*[
                cache.get_or_compute(ArcType.GAME_WINNING_RALLY, "E1", compute)
                for _ in range(10)
            ])

        entries = asyncio.run(scenario())

        assert len(calls) == 1
        assert len({id(e) for e in entries}) == 1
        assert cache.stats.misses == 1
        assert cache.stats.coalesced == 9

    def test_failed_computation_reaches_every_waiter_and_is_not_cached(self):
        cache = StoryCache(clock=ManualClock())
        calls = []

        async def compute():
            calls.append(1)
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        async def scenario():
            return await asyncio.gather(*[
                cache.get_or_compute(ArcType.GAME_WINNING_RALLY, "E1", compute)
                for _ in range(3)
            ], return_exceptions=True)

        results = asyncio.run(scenario())

        assert all(isinstance(r, RuntimeError) for r in results)
        assert len(calls) == 1
        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is None

    def test_cancelled_waiter_does_not_cancel_shared_computation(self):
        clock = ManualClock()
        cache = StoryCache(clock=clock)

        async def compute():
            await asyncio.sleep(0.05)
            return make_entry(clock)

        async def scenario():
            impatient = asyncio.ensure_future(
                cache.get_or_compute(ArcType.GAME_WINNING_RALLY, "E1", compute)
            )
            patient = asyncio.ensure_future(
                cache.get_or_compute(ArcType.GAME_WINNING_RALLY, "E1", compute)
            )
            await asyncio.sleep(0.01)
            impatient.cancel()
            return await patient

        entry = asyncio.run(scenario())

        assert entry.is_tombstone
        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is not None

    def test_result_in_flight_during_invalidation_is_not_stored(self):
        clock = ManualClock()
        cache = StoryCache(clock=clock)

        async def compute():
            await asyncio.sleep(0.05)
            return make_entry(clock)

        async def scenario():
            task = asyncio.ensure_future(
                cache.get_or_compute(ArcType.GAME_WINNING_RALLY, "E1", compute)
            )
            await asyncio.sleep(0.01)
            cache.invalidate("E1")
            return await task

        entry = asyncio.run(scenario())

        assert entry.is_tombstone
        assert cache.peek(ArcType.GAME_WINNING_RALLY, "E1") is None
