"""Unit tests for croupier.cache.SemanticCache."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from croupier.backends.memory import InMemoryCacheBackend
from croupier.cache import SemanticCache, eviction_score
from croupier.config import CacheSettings
from croupier.types import CacheEntry, CacheHitKind, CachePayload, CachePolicy

VEC_GGR = [1.0, 0.0, 0.0]
VEC_GGR_PARAPHRASE = [0.99, 0.1, 0.0]
VEC_DEPOSITS = [0.0, 1.0, 0.0]


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def payload(sql="SELECT 1 FROM tbl_Daily_actions", confidence=0.9):
    return CachePayload(prompt="prompt", sql=sql, confidence=confidence)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def cache(clock):
    c = SemanticCache(InMemoryCacheBackend(), CacheSettings(default_ttl_seconds=60.0), clock=clock)
    await c.start(3)
    return c


class TestLookup:
    async def test_exact_hit(self, cache):
        assert await cache.set("fp-ggr", VEC_GGR, payload(), "total ggr")
        result = await cache.get("fp-ggr")
        assert result.kind == CacheHitKind.EXACT
        assert result.hit
        assert result.similarity == 1.0
        assert result.entry.hit_count == 1
        assert result.entry.payload.sql == "SELECT 1 FROM tbl_Daily_actions"

    async def test_hit_count_persists(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        await cache.get("fp-ggr")
        result = await cache.get("fp-ggr")
        assert result.entry.hit_count == 2

    async def test_semantic_hit(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        result = await cache.get("fp-other", VEC_GGR_PARAPHRASE)
        assert result.kind == CacheHitKind.SEMANTIC
        assert result.entry.fingerprint == "fp-ggr"
        assert result.similarity == pytest.approx(0.9949, abs=1e-4)

    async def test_dissimilar_question_misses(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        result = await cache.get("fp-other", VEC_DEPOSITS)
        assert result.kind == CacheHitKind.MISS
        assert not result.hit
        assert cache.stats["misses"] == 1

    async def test_miss_without_embedding(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        assert not (await cache.get("fp-other")).hit

    async def test_validator_rejects_semantic_candidate(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        result = await cache.get("fp-other", VEC_GGR_PARAPHRASE, validate=lambda e: False)
        assert not result.hit
        assert cache.stats["rejected_semantic"] == 1

    async def test_validator_not_applied_to_exact_hits(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        result = await cache.get("fp-ggr", VEC_GGR, validate=lambda e: False)
        assert result.kind == CacheHitKind.EXACT

    async def test_search_widens_past_rejected_candidates(self, cache):
        for i in range(6):
            await cache.set(f"fp-games-{i}", VEC_GGR, payload(sql="SELECT 1 FROM Games"))
        await cache.set("fp-ggr", VEC_GGR_PARAPHRASE, payload())

        result = await cache.get(
            "fp-other", VEC_GGR, validate=lambda e: "tbl_Daily_actions" in e.payload.sql
        )
        assert result.kind == CacheHitKind.SEMANTIC
        assert result.entry.fingerprint == "fp-ggr"
        assert cache.stats["rejected_semantic"] == 6

    async def test_search_widens_past_expired_candidates(self, cache, clock):
        for i in range(6):
            await cache.set(f"fp-old-{i}", VEC_GGR, payload(), ttl_seconds=10.0)
        await cache.set("fp-ggr", VEC_GGR_PARAPHRASE, payload())
        clock.advance(11)

        result = await cache.get("fp-other", VEC_GGR)
        assert result.entry.fingerprint == "fp-ggr"
        assert cache.stats["expired"] == 6
        assert await cache.size() == 1

    async def test_get_exact_ignores_similar_entries(self, cache):
        await cache.set("fp-ggr", VEC_GGR, payload())
        assert (await cache.get_exact("fp-ggr")).kind == CacheHitKind.EXACT
        assert not (await cache.get_exact("fp-other")).hit
        assert cache.stats["exact_hits"] == 1
        assert cache.stats["misses"] == 0


class TestExpiry:
    async def test_absolute_ttl(self, cache, clock):
        await cache.set("fp-ggr", VEC_GGR, payload())
        clock.advance(59)
        assert (await cache.get("fp-ggr")).hit
        clock.advance(2)
        assert not (await cache.get("fp-ggr")).hit
        assert await cache.size() == 0
        assert cache.stats["expired"] == 1

    async def test_expired_semantic_candidate_removed(self, cache, clock):
        await cache.set("fp-ggr", VEC_GGR, payload())
        clock.advance(61)
        assert not (await cache.get("fp-other", VEC_GGR)).hit
        assert await cache.size() == 0

    async def test_sliding_ttl_extends_on_access(self, cache, clock):
        await cache.set("fp-ggr", VEC_GGR, payload(), policy=CachePolicy.SLIDING)
        clock.advance(50)
        assert (await cache.get("fp-ggr")).hit
        clock.advance(50)
        assert (await cache.get("fp-ggr")).hit
        clock.advance(61)
        assert not (await cache.get("fp-ggr")).hit

    async def test_per_entry_ttl(self, cache, clock):
        await cache.set("fp-ggr", VEC_GGR, payload(), ttl_seconds=10.0)
        clock.advance(11)
        assert not (await cache.get("fp-ggr")).hit


class TestEviction:
    async def test_least_valuable_entry_evicted(self, clock):
        cache = SemanticCache(
            InMemoryCacheBackend(), CacheSettings(max_cache_size=2), clock=clock
        )
        await cache.start(3)
        await cache.set("a", VEC_GGR, payload())
        await cache.set("b", VEC_DEPOSITS, payload())
        await cache.get("a")
        await cache.set("c", [0.0, 0.0, 1.0], payload())
        assert await cache.size() == 2
        assert (await cache.get("a")).hit
        assert (await cache.get("c")).hit
        assert not (await cache.get("b")).hit
        assert cache.stats["evicted"] == 1

    def test_eviction_score(self, clock):
        entry = CacheEntry(
            fingerprint="fp",
            payload=payload(confidence=0.8),
            created_at=clock.now,
            last_accessed_at=clock.now,
            hit_count=1,
        )
        assert eviction_score(entry, clock.now) == pytest.approx(1.6)
        assert eviction_score(entry, clock.now + timedelta(seconds=1)) == pytest.approx(0.8)


class TestDegradation:
    async def test_storage_errors_degrade_to_miss(self, clock):
        cache = SemanticCache(InMemoryCacheBackend(), clock=clock)
        assert not (await cache.get("fp", VEC_GGR)).hit
        assert await cache.set("fp", VEC_GGR, payload()) is False
        assert cache.stats["errors"] == 2

    async def test_disabled_cache(self, clock):
        cache = SemanticCache(InMemoryCacheBackend(), CacheSettings(enabled=False), clock=clock)
        await cache.start(3)
        assert await cache.set("fp", VEC_GGR, payload()) is False
        assert not (await cache.get("fp")).hit
        assert await cache.size() == 0


class TestSingleFlight:
    async def test_concurrent_computations_coalesce(self, cache):
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "SELECT 1"

        results = await asyncio.gather(*(cache.get_or_compute("fp", compute) for _ in range(5)))
        assert results == ["SELECT 1"] * 5
        assert calls == 1
        assert cache.stats["coalesced"] == 4
        assert cache.stats["in_flight"] == 0

    async def test_exception_shared_with_waiters(self, cache):
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise ValueError("provider down")

        results = await asyncio.gather(
            cache.get_or_compute("fp", compute),
            cache.get_or_compute("fp", compute),
            return_exceptions=True,
        )
        assert calls == 1
        assert all(isinstance(r, ValueError) for r in results)

    async def test_cancelled_leader_hands_over(self, cache):
        async def slow():
            await asyncio.sleep(10)
            return "slow"

        async def fast():
            return "fast"

        leader = asyncio.create_task(cache.get_or_compute("fp", slow))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.get_or_compute("fp", fast))
        await asyncio.sleep(0)
        leader.cancel()
        assert await waiter == "fast"
        with pytest.raises(asyncio.CancelledError):
            await leader

    async def test_different_fingerprints_run_independently(self, cache):
        async def compute():
            return "x"

        await cache.get_or_compute("a", compute)
        await cache.get_or_compute("b", compute)
        assert cache.stats["coalesced"] == 0


class TestMaintenance:
    async def test_clear(self, cache):
        await cache.set("a", VEC_GGR, payload())
        await cache.set("b", VEC_DEPOSITS, payload())
        assert await cache.clear() == 2
        assert await cache.size() == 0
        assert await cache.clear() == 0

    async def test_stats_counters(self, cache):
        await cache.set("a", VEC_GGR, payload())
        await cache.get("a")
        await cache.get("x", VEC_GGR_PARAPHRASE)
        stats = cache.stats
        assert stats["writes"] == 1
        assert stats["exact_hits"] == 1
        assert stats["semantic_hits"] == 1
