"""Integration tests for QdrantBackend with in-memory Qdrant."""

from datetime import datetime, timezone

import pytest

from croupier.backends.qdrant import QdrantBackend
from croupier.cache import SemanticCache
from croupier.config import CacheSettings
from croupier.exceptions import StorageError
from croupier.types import CacheEntry, CacheHitKind, CachePayload, CachePolicy
from tests.conftest import MockEmbedder

pytestmark = pytest.mark.integration

COLLECTION = "test_integration"
DIMENSION = 64


@pytest.fixture
async def backend():
    b = QdrantBackend(CacheSettings(qdrant_mode="memory"))
    await b.connect()
    yield b
    await b.close()


@pytest.fixture
def embedder():
    return MockEmbedder(dimension=DIMENSION)


async def _make_entry(embedder: MockEmbedder, question: str, sql: str) -> CacheEntry:
    vec = await embedder.aembed(question.lower())
    return CacheEntry(
        fingerprint=f"fp-{question.lower()}",
        vector=vec,
        normalized_question=question.lower(),
        payload=CachePayload(prompt="prompt", sql=sql, confidence=0.9, provider_id="primary"),
        created_at=datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc),
        last_accessed_at=datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc),
        policy=CachePolicy.SLIDING,
    )


class TestInitialize:
    async def test_initialize_creates_collection(self, backend):
        await backend.initialize(COLLECTION, DIMENSION)
        collections = await backend.client.get_collections()
        names = {c.name for c in collections.collections}
        assert COLLECTION in names

    async def test_initialize_idempotent(self, backend):
        await backend.initialize(COLLECTION, DIMENSION)
        await backend.initialize(COLLECTION, DIMENSION)
        assert await backend.count(COLLECTION) == 0

    def test_client_requires_connect(self):
        with pytest.raises(StorageError, match="connect"):
            QdrantBackend().client


class TestGetAndUpsert:
    async def test_round_trip_preserves_payload(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entry = await _make_entry(embedder, "Total GGR last month", "SELECT SUM(BetsCasino) FROM tbl_Daily_actions")
        await backend.upsert(COLLECTION, [entry])

        stored = await backend.get(COLLECTION, entry.fingerprint)
        assert stored.fingerprint == entry.fingerprint
        assert stored.payload == entry.payload
        assert stored.policy == CachePolicy.SLIDING
        assert stored.created_at == entry.created_at
        assert len(stored.vector) == DIMENSION

    async def test_same_fingerprint_replaces(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entry = await _make_entry(embedder, "Total GGR", "SELECT 1")
        await backend.upsert(COLLECTION, [entry])
        await backend.upsert(COLLECTION, [entry.model_copy(update={"hit_count": 3})])
        assert await backend.count(COLLECTION) == 1
        assert (await backend.get(COLLECTION, entry.fingerprint)).hit_count == 3

    async def test_get_missing(self, backend):
        await backend.initialize(COLLECTION, DIMENSION)
        assert await backend.get(COLLECTION, "nonexistent") is None


class TestSearch:
    async def test_upsert_and_search(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entry = await _make_entry(embedder, "How many VIP players?", "SELECT COUNT(*) FROM tbl_Daily_actions_players")
        await backend.upsert(COLLECTION, [entry])

        vec = await embedder.aembed("how many vip players?")
        results = await backend.search(COLLECTION, vec, limit=5, score_threshold=0.0)
        assert len(results) == 1
        assert results[0].entry.payload.sql == "SELECT COUNT(*) FROM tbl_Daily_actions_players"
        assert results[0].score > 0.99

    async def test_search_threshold(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entry = await _make_entry(embedder, "How many VIP players?", "SELECT 1")
        await backend.upsert(COLLECTION, [entry])

        unrelated_vec = await embedder.aembed("completely unrelated query xyz")
        results = await backend.search(COLLECTION, unrelated_vec, limit=5, score_threshold=0.99)
        assert results == []


class TestScrollAndDelete:
    async def test_scroll_pagination(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entries = [await _make_entry(embedder, f"question {i}", f"SELECT {i}") for i in range(5)]
        await backend.upsert(COLLECTION, entries)

        all_results = []
        offset = None
        while True:
            batch, offset = await backend.scroll(COLLECTION, limit=2, offset=offset)
            all_results.extend(batch)
            if offset is None:
                break

        assert sorted(e.fingerprint for e in all_results) == sorted(e.fingerprint for e in entries)

    async def test_delete(self, backend, embedder):
        await backend.initialize(COLLECTION, DIMENSION)
        entry = await _make_entry(embedder, "to delete", "SELECT 1")
        await backend.upsert(COLLECTION, [entry])
        assert await backend.count(COLLECTION) == 1

        await backend.delete(COLLECTION, [entry.fingerprint, "unknown"])
        assert await backend.count(COLLECTION) == 0


class TestSemanticCacheOnQdrant:
    async def test_exact_and_semantic_hits(self, embedder):
        cache = SemanticCache(QdrantBackend(CacheSettings(qdrant_mode="memory")))
        await cache.start(DIMENSION)
        try:
            vec = await embedder.aembed("total ggr last month")
            assert await cache.set("fp-ggr", vec, CachePayload(prompt="p", sql="SELECT 1", confidence=0.9))

            exact = await cache.get("fp-ggr")
            assert exact.kind == CacheHitKind.EXACT
            assert exact.entry.hit_count == 1

            semantic = await cache.get("fp-paraphrase", vec)
            assert semantic.kind == CacheHitKind.SEMANTIC
            assert semantic.entry.fingerprint == "fp-ggr"
        finally:
            await cache.close()


class TestCloseAndReopen:
    async def test_close_and_reopen(self):
        b = QdrantBackend(CacheSettings(qdrant_mode="memory"))
        await b.connect()
        await b.initialize(COLLECTION, DIMENSION)
        await b.close()

        # New in-memory instance, so the collection is gone
        await b.connect()
        await b.initialize(COLLECTION, DIMENSION)
        assert await b.count(COLLECTION) == 0
        await b.close()
