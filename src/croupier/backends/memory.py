"""In-process cache store. No persistence; the default backend."""

import logging
from typing import Dict, List, Optional, Tuple

from croupier.embeddings.service import EmbeddingService
from croupier.exceptions import StorageError
from croupier.interfaces.storage import CacheStorageBackend
from croupier.types import CacheEntry, ScoredEntry

logger = logging.getLogger(__name__)


class InMemoryCacheBackend(CacheStorageBackend):
    """Dictionary-backed store with brute-force cosine search."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, CacheEntry]] = {}

    def _collection(self, collection_name: str) -> Dict[str, CacheEntry]:
        try:
            return self._collections[collection_name]
        except KeyError:
            raise StorageError(
                f"Collection '{collection_name}' is not initialized"
            ) from None

    async def initialize(self, collection_name: str, dimension: int, **kwargs) -> None:
        if collection_name not in self._collections:
            self._collections[collection_name] = {}
            logger.info("Created in-memory collection '%s' (dim=%d)", collection_name, dimension)

    async def get(self, collection_name: str, fingerprint: str) -> Optional[CacheEntry]:
        return self._collection(collection_name).get(fingerprint)

    async def upsert(self, collection_name: str, entries: List[CacheEntry]) -> None:
        store = self._collection(collection_name)
        for entry in entries:
            store[entry.fingerprint] = entry

    async def delete(self, collection_name: str, fingerprints: List[str]) -> None:
        store = self._collection(collection_name)
        for fp in fingerprints:
            store.pop(fp, None)

    async def search(
        self,
        collection_name: str,
        vector: List[float],
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> List[ScoredEntry]:
        scored = []
        for entry in self._collection(collection_name).values():
            score = EmbeddingService.cosine_similarity(vector, entry.vector)
            if score >= score_threshold:
                scored.append(ScoredEntry(entry=entry, score=score))
        scored.sort(key=lambda s: (-s.score, s.entry.fingerprint))
        return scored[:limit]

    async def scroll(
        self,
        collection_name: str,
        limit: int = 100,
        offset: Optional[str] = None,
    ) -> Tuple[List[CacheEntry], Optional[str]]:
        entries = list(self._collection(collection_name).values())
        start = int(offset) if offset else 0
        end = start + limit
        next_offset = str(end) if end < len(entries) else None
        return entries[start:end], next_offset

    async def count(self, collection_name: str) -> int:
        return len(self._collection(collection_name))

    async def close(self) -> None:
        self._collections.clear()
