"""EmbeddingService: cached, order-preserving embeddings with outage fallback."""

import logging
import math
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from croupier.exceptions import EmbeddingError, EmbeddingUnavailable
from croupier.interfaces.embedder import BaseEmbedder
from croupier.utils.normalization import text_hash

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Wraps a :class:`BaseEmbedder` with a content-hash LRU cache.

    Entries older than *ttl_seconds* are recomputed on the next request but
    are kept (until evicted by size) as a fallback for when the embedder is
    down. Only when no vector was ever computed for a text does an outage
    surface as :class:`EmbeddingUnavailable`.

    Args:
        embedder: The underlying embedding backend.
        ttl_seconds: Freshness window for cached vectors (default 24h).
        max_size: Maximum number of cached vectors (LRU eviction).
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        embedder: BaseEmbedder,
        ttl_seconds: float = 86400.0,
        max_size: int = 10000,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._embedder = embedder
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock or time.monotonic
        self._cache: "OrderedDict[str, Tuple[List[float], float]]" = OrderedDict()
        self._stats = {"hits": 0, "misses": 0, "stale_fallbacks": 0, "failures": 0}

    @property
    def dimension(self) -> int:
        return self._embedder.dimension

    @property
    def embedder(self) -> BaseEmbedder:
        return self._embedder

    # --- Embedding ---

    async def embed(self, text: str) -> List[float]:
        """Embed one text, serving fresh cached vectors without a backend call.

        Raises:
            EmbeddingUnavailable: The backend failed and no vector exists.
        """
        if not text or not text.strip():
            return [0.0] * self.dimension

        key = text_hash(text)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        self._stats["misses"] += 1
        try:
            vector = await self._embedder.aembed(text)
        except EmbeddingError as e:
            return self._fallback(key, text, e)

        self._store(key, vector)
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed many texts; ``result[i]`` corresponds to ``texts[i]``.

        Only texts without a fresh cached vector are sent to the backend, in
        chunks of the embedder's ``max_batch_size``.
        """
        results: List[Optional[List[float]]] = [None] * len(texts)
        pending: Dict[str, List[int]] = {}
        pending_text: Dict[str, str] = {}

        for i, text in enumerate(texts):
            if not text or not text.strip():
                results[i] = [0.0] * self.dimension
                continue
            key = text_hash(text)
            cached = self._lookup(key)
            if cached is not None:
                results[i] = cached
                continue
            pending.setdefault(key, []).append(i)
            pending_text[key] = text

        if pending:
            keys = list(pending)
            self._stats["misses"] += len(keys)
            try:
                vectors = await self._embedder.aembed_chunked([pending_text[k] for k in keys])
            except EmbeddingError as e:
                vectors = [self._fallback(k, pending_text[k], e) for k in keys]
            else:
                for k, vec in zip(keys, vectors):
                    self._store(k, vec)
            for k, vec in zip(keys, vectors):
                for i in pending[k]:
                    results[i] = vec

        return [vec for vec in results if vec is not None]

    # --- Similarity ---

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """dot(a, b) / (|a| * |b|), clamped to [-1, 1].

        Returns 0.0 for empty or mismatched-length vectors and for
        zero-norm vectors instead of raising.
        """
        if not a or not b or len(a) != len(b):
            return 0.0
        dot = 0.0
        norm_a = 0.0
        norm_b = 0.0
        for x, y in zip(a, b):
            dot += x * y
            norm_a += x * x
            norm_b += y * y
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        sim = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
        return max(-1.0, min(1.0, sim))

    # --- Cache internals ---

    def _lookup(self, key: str) -> Optional[List[float]]:
        item = self._cache.get(key)
        if item is None:
            return None
        vector, stored_at = item
        if self._clock() - stored_at >= self._ttl:
            return None
        self._cache.move_to_end(key)
        self._stats["hits"] += 1
        return vector

    def _store(self, key: str, vector: List[float]) -> None:
        if self._max_size <= 0:
            return
        self._cache[key] = (vector, self._clock())
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    def _fallback(self, key: str, text: str, error: EmbeddingError) -> List[float]:
        item = self._cache.get(key)
        if item is not None:
            self._stats["stale_fallbacks"] += 1
            logger.warning(
                "Embedding backend failed for '%s', serving previous vector: %s",
                text[:50],
                error,
            )
            return item[0]
        self._stats["failures"] += 1
        raise EmbeddingUnavailable(
            f"Embedding unavailable for '{text[:50]}' and no previous vector: {error}"
        ) from error

    # --- Monitoring ---

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, "size": len(self._cache)}

    def clear(self) -> None:
        self._cache.clear()
        self._stats = {k: 0 for k in self._stats}
