"""CacheStorageBackend abstract class defining the cache store interface."""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from croupier.types import CacheEntry, ScoredEntry


class CacheStorageBackend(ABC):
    """Abstract base class for semantic cache stores.

    Entries are keyed by fingerprint. Expiry is enforced by the cache layer,
    not by the backend, so every backend only needs plain get/set/delete plus
    a vector similarity search.
    """

    @abstractmethod
    async def initialize(self, collection_name: str, dimension: int, **kwargs) -> None:
        """Set up the store (create collection, indexes).

        Idempotent: calling it twice with the same arguments must not raise
        or duplicate data.

        Raises:
            StorageInitializationError: If setup fails.
        """
        ...

    @abstractmethod
    async def get(self, collection_name: str, fingerprint: str) -> Optional[CacheEntry]:
        """Fetch one entry by fingerprint, or None.

        Raises:
            StorageError: If the lookup fails.
        """
        ...

    @abstractmethod
    async def upsert(self, collection_name: str, entries: List[CacheEntry]) -> None:
        """Insert or replace entries (by fingerprint).

        Raises:
            StorageError: If the upsert fails.
        """
        ...

    @abstractmethod
    async def delete(self, collection_name: str, fingerprints: List[str]) -> None:
        """Delete entries by fingerprint. Unknown fingerprints are ignored.

        Raises:
            StorageError: If the delete fails.
        """
        ...

    @abstractmethod
    async def search(
        self,
        collection_name: str,
        vector: List[float],
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> List[ScoredEntry]:
        """Entries whose vector has cosine similarity >= *score_threshold*.

        Returns:
            Scored entries sorted by descending score.

        Raises:
            StorageError: If the search fails.
        """
        ...

    @abstractmethod
    async def scroll(
        self,
        collection_name: str,
        limit: int = 100,
        offset: Optional[str] = None,
    ) -> Tuple[List[CacheEntry], Optional[str]]:
        """Iterate over all entries.

        Returns:
            Tuple of (entries, next_offset). next_offset is None when done.

        Raises:
            StorageError: If the scroll fails.
        """
        ...

    @abstractmethod
    async def count(self, collection_name: str) -> int:
        """Return the number of entries in a collection.

        Raises:
            StorageError: If the count fails.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources (close connections, etc.)."""
        ...

    # --- Context manager support ---

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
