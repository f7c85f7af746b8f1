"""SemanticCache: exact and similarity lookups, TTL, eviction and single-flight."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from croupier.config import CacheSettings
from croupier.exceptions import StorageError
from croupier.interfaces.storage import CacheStorageBackend
from croupier.types import (
    CacheEntry,
    CacheHitKind,
    CachePayload,
    CachePolicy,
    CacheResult,
    ScoredEntry,
)

logger = logging.getLogger(__name__)

Validator = Callable[[CacheEntry], bool]

_SEARCH_LIMIT = 5
_SCROLL_BATCH = 256


def eviction_score(entry: CacheEntry, now: datetime) -> float:
    """``recency * relevance``; the lowest scores are evicted first."""
    idle = max(0.0, (now - entry.last_accessed_at).total_seconds())
    recency = 1.0 / (1.0 + idle)
    relevance = entry.payload.confidence * (1 + entry.hit_count)
    return recency * relevance


class SemanticCache:
    """Cache of end-to-end generation results keyed by request fingerprint.

    Lookup order: exact fingerprint, then the most similar stored question
    above the similarity threshold. Expired entries are never returned and
    are deleted when encountered. Storage failures are logged and degrade
    to a miss (or a skipped write); they never fail a request.

    ``get_or_compute`` coalesces concurrent computations for the same
    fingerprint: one caller runs, the others await its outcome.

    Args:
        backend: Storage backend holding the entries.
        settings: TTL, policy, threshold and size limits.
        clock: Source of timezone-aware "now", injectable for tests.
    """

    def __init__(
        self,
        backend: CacheStorageBackend,
        settings: Optional[CacheSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._backend = backend
        self._settings = settings or CacheSettings()
        self._collection = self._settings.collection_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}
        self._stats = {
            "exact_hits": 0,
            "semantic_hits": 0,
            "misses": 0,
            "writes": 0,
            "expired": 0,
            "evicted": 0,
            "rejected_semantic": 0,
            "coalesced": 0,
            "errors": 0,
        }

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def backend(self) -> CacheStorageBackend:
        return self._backend

    async def start(self, dimension: int) -> None:
        """Create the backing collection.

        Raises:
            StorageInitializationError: The backend could not be prepared.
        """
        await self._backend.initialize(self._collection, dimension)

    async def close(self) -> None:
        await self._backend.close()

    # --- Lookup ---

    async def get(
        self,
        fingerprint: str,
        embedding: Optional[Sequence[float]] = None,
        validate: Optional[Validator] = None,
    ) -> CacheResult:
        """Exact hit, else semantic hit, else miss.

        Args:
            fingerprint: Exact request key.
            embedding: Question embedding for the similarity search.
            validate: Optional predicate a semantic candidate must satisfy.
        """
        if not self.enabled:
            return CacheResult()

        now = self._clock()
        try:
            exact = await self._exact_lookup(fingerprint, now)
            if exact is not None:
                return exact
            if embedding:
                return await self._semantic_lookup(fingerprint, list(embedding), validate, now)
        except StorageError as e:
            self._stats["errors"] += 1
            logger.warning("Cache lookup failed, treating as miss: %s", e)

        self._stats["misses"] += 1
        return CacheResult()

    async def get_exact(self, fingerprint: str) -> CacheResult:
        """Exact-fingerprint lookup only. Hits are counted, misses are not."""
        if not self.enabled:
            return CacheResult()
        try:
            exact = await self._exact_lookup(fingerprint, self._clock())
        except StorageError as e:
            self._stats["errors"] += 1
            logger.warning("Exact cache lookup failed: %s", e)
            return CacheResult()
        return exact or CacheResult()

    async def _exact_lookup(self, fingerprint: str, now: datetime) -> Optional[CacheResult]:
        entry = await self._backend.get(self._collection, fingerprint)
        if entry is None:
            return None
        if not entry.is_expired(now):
            return await self._hit(CacheHitKind.EXACT, entry, 1.0, now)
        await self._drop_expired([fingerprint])
        return None

    async def _semantic_lookup(
        self,
        fingerprint: str,
        embedding: List[float],
        validate: Optional[Validator],
        now: datetime,
    ) -> CacheResult:
        threshold = self._settings.semantic_similarity_threshold
        expired: List[str] = []
        seen: Set[str] = set()
        found: Optional[CacheResult] = None
        limit = _SEARCH_LIMIT
        while found is None:
            candidates = await self._backend.search(
                self._collection, embedding, limit=limit, score_threshold=threshold
            )
            found = self._first_valid(candidates, fingerprint, validate, now, seen, expired)
            # Fewer results than asked for means the search is exhausted.
            if len(candidates) < limit or limit >= self._settings.max_cache_size:
                break
            limit = min(limit * 2, self._settings.max_cache_size)

        if expired:
            await self._drop_expired(expired)
        if found is None:
            self._stats["misses"] += 1
            return CacheResult()
        return await self._hit(found.kind, found.entry, found.similarity, now)

    def _first_valid(
        self,
        candidates: Sequence[ScoredEntry],
        fingerprint: str,
        validate: Optional[Validator],
        now: datetime,
        seen: Set[str],
        expired: List[str],
    ) -> Optional[CacheResult]:
        """First unseen live candidate that passes *validate*, in score order."""
        threshold = self._settings.semantic_similarity_threshold
        for scored in candidates:
            candidate = scored.entry
            if candidate.fingerprint in seen:
                continue
            seen.add(candidate.fingerprint)
            if candidate.fingerprint == fingerprint or scored.score < threshold:
                continue
            if candidate.is_expired(now):
                expired.append(candidate.fingerprint)
                continue
            if validate is not None and not validate(candidate):
                self._stats["rejected_semantic"] += 1
                logger.debug(
                    "Semantic candidate %s (%.3f) failed validation",
                    candidate.fingerprint[:12],
                    scored.score,
                )
                continue
            return CacheResult(kind=CacheHitKind.SEMANTIC, entry=candidate, similarity=scored.score)
        return None

    async def _hit(
        self, kind: CacheHitKind, entry: CacheEntry, similarity: float, now: datetime
    ) -> CacheResult:
        touched = entry.touched(now)
        try:
            await self._backend.upsert(self._collection, [touched])
        except StorageError as e:
            self._stats["errors"] += 1
            logger.warning("Failed to record cache hit for %s: %s", entry.fingerprint[:12], e)
        self._stats["exact_hits" if kind == CacheHitKind.EXACT else "semantic_hits"] += 1
        logger.debug("Cache %s hit %s (similarity=%.3f)", kind.value, entry.fingerprint[:12], similarity)
        return CacheResult(kind=kind, entry=touched, similarity=similarity)

    async def _drop_expired(self, fingerprints: List[str]) -> None:
        await self._backend.delete(self._collection, fingerprints)
        self._stats["expired"] += len(fingerprints)

    # --- Writes ---

    async def set(
        self,
        fingerprint: str,
        embedding: Sequence[float],
        payload: CachePayload,
        normalized_question: str = "",
        policy: Optional[CachePolicy] = None,
        ttl_seconds: Optional[float] = None,
    ) -> bool:
        """Store *payload* under *fingerprint*, evicting if over capacity.

        Returns:
            True if the entry was written.
        """
        if not self.enabled:
            return False

        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            vector=list(embedding),
            normalized_question=normalized_question,
            payload=payload,
            created_at=now,
            last_accessed_at=now,
            ttl_seconds=ttl_seconds or self._settings.default_ttl_seconds,
            policy=policy or self._settings.policy,
        )
        try:
            await self._backend.upsert(self._collection, [entry])
            self._stats["writes"] += 1
            await self._evict(now, keep=fingerprint)
        except StorageError as e:
            self._stats["errors"] += 1
            logger.warning("Cache write failed for %s: %s", fingerprint[:12], e)
            return False
        return True

    async def _evict(self, now: datetime, keep: str) -> None:
        count = await self._backend.count(self._collection)
        excess = count - self._settings.max_cache_size
        if excess <= 0:
            return

        entries = [e for e in await self._all_entries() if e.fingerprint != keep]
        expired = [e.fingerprint for e in entries if e.is_expired(now)]
        if expired:
            await self._drop_expired(expired)
            excess -= len(expired)
        if excess <= 0:
            return

        live = [e for e in entries if not e.is_expired(now)]
        live.sort(key=lambda e: (eviction_score(e, now), e.last_accessed_at, e.fingerprint))
        victims = [e.fingerprint for e in live[:excess]]
        await self._backend.delete(self._collection, victims)
        self._stats["evicted"] += len(victims)
        logger.info("Evicted %d cache entries (max size %d)", len(victims), self._settings.max_cache_size)

    async def _all_entries(self) -> List[CacheEntry]:
        entries: List[CacheEntry] = []
        offset = None
        while True:
            batch, offset = await self._backend.scroll(
                self._collection, limit=_SCROLL_BATCH, offset=offset
            )
            entries.extend(batch)
            if offset is None:
                return entries

    # --- Single-flight ---

    async def get_or_compute(self, fingerprint: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Run *compute* unless an identical computation is already in flight.

        Waiters share the leader's result or exception. If the leader is
        cancelled its future is cancelled too and waiters start over, one of
        them becoming the new leader.
        """
        while True:
            pending = self._inflight.get(fingerprint)
            if pending is None:
                break
            await asyncio.wait({pending})
            if pending.cancelled():
                continue
            self._stats["coalesced"] += 1
            return pending.result()

        future = asyncio.get_running_loop().create_future()
        self._inflight[fingerprint] = future
        try:
            result = await compute()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure is not logged by asyncio.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._inflight.get(fingerprint) is future:
                del self._inflight[fingerprint]

    # --- Maintenance ---

    async def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        fingerprints = [e.fingerprint for e in await self._all_entries()]
        if fingerprints:
            await self._backend.delete(self._collection, fingerprints)
        return len(fingerprints)

    async def size(self) -> int:
        return await self._backend.count(self._collection)

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, "in_flight": len(self._inflight)}
