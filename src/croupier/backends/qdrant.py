"""Qdrant cache store supporting memory, Docker, and cloud deployment modes."""

import logging
import uuid
from typing import List, Optional, Tuple

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    HnswConfigDiff,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from croupier.config import CacheSettings
from croupier.exceptions import StorageError, StorageInitializationError
from croupier.interfaces.storage import CacheStorageBackend
from croupier.types import CacheEntry, ScoredEntry

logger = logging.getLogger(__name__)

_FINGERPRINT_NAMESPACE = uuid.UUID("6f1c5b2e-7d44-4c1a-9a55-3c3f1f0b8e21")


class QdrantBackend(CacheStorageBackend):
    """Qdrant-based cache store.

    Supports three deployment modes:
        - "memory": In-process, no persistence. Best for testing.
        - "docker": Connect to a local/remote Qdrant Docker instance.
        - "cloud": Connect to Qdrant Cloud with API key.

    Point ids are derived from the fingerprint (UUIDv5) so that an upsert of
    the same fingerprint replaces the previous entry.

    Args:
        settings: Cache settings holding the Qdrant connection fields.
    """

    def __init__(self, settings: Optional[CacheSettings] = None):
        self._settings = settings or CacheSettings()
        self._client: Optional[AsyncQdrantClient] = None
        self._initialized_collections: set = set()

    @property
    def client(self) -> AsyncQdrantClient:
        if self._client is None:
            raise StorageError("Backend not connected. Call connect() first.")
        return self._client

    async def connect(self) -> None:
        """Establish connection to Qdrant based on settings.

        Raises:
            StorageInitializationError: If connection fails.
        """
        try:
            self._client = self._build_client()
            logger.info("Connected to Qdrant in '%s' mode", self._settings.qdrant_mode)
        except StorageInitializationError:
            raise
        except Exception as e:
            raise StorageInitializationError(
                f"Failed to connect to Qdrant in '{self._settings.qdrant_mode}' mode: {e}"
            ) from e

    async def initialize(self, collection_name: str, dimension: int, **kwargs) -> None:
        """Create the collection (cosine distance) and a fingerprint index.

        Idempotent: skips creation if the collection already exists.
        """
        if collection_name in self._initialized_collections:
            return
        if self._client is None:
            await self.connect()

        try:
            collections = await self.client.get_collections()
            existing = {c.name for c in collections.collections}
            if collection_name not in existing:
                await self.client.create_collection(
                    collection_name=collection_name,
                    vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
                    hnsw_config=HnswConfigDiff(
                        m=kwargs.get("hnsw_m", 16),
                        ef_construct=kwargs.get("hnsw_ef_construct", 100),
                    ),
                )
                await self.client.create_payload_index(
                    collection_name=collection_name,
                    field_name="fingerprint",
                    field_schema=PayloadSchemaType.KEYWORD,
                )
                logger.info("Created collection '%s' (dim=%d)", collection_name, dimension)
            else:
                logger.info("Collection '%s' already exists, skipping creation", collection_name)
            self._initialized_collections.add(collection_name)
        except (StorageError, StorageInitializationError):
            raise
        except Exception as e:
            raise StorageInitializationError(
                f"Failed to initialize collection '{collection_name}': {e}"
            ) from e

    async def get(self, collection_name: str, fingerprint: str) -> Optional[CacheEntry]:
        try:
            records = await self.client.retrieve(
                collection_name=collection_name,
                ids=[self.point_id(fingerprint)],
                with_payload=True,
                with_vectors=True,
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant retrieve failed on '{collection_name}': {e}") from e
        if not records:
            return None
        return self._record_to_entry(records[0])

    async def upsert(self, collection_name: str, entries: List[CacheEntry]) -> None:
        if not entries:
            return
        try:
            await self.client.upsert(
                collection_name=collection_name,
                wait=True,
                points=[self._entry_to_point(e) for e in entries],
            )
            logger.debug("Upserted %d points into '%s'", len(entries), collection_name)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant upsert failed on '{collection_name}': {e}") from e

    async def delete(self, collection_name: str, fingerprints: List[str]) -> None:
        if not fingerprints:
            return
        try:
            await self.client.delete(
                collection_name=collection_name,
                points_selector=PointIdsList(points=[self.point_id(fp) for fp in fingerprints]),
                wait=True,
            )
            logger.debug("Deleted %d points from '%s'", len(fingerprints), collection_name)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant delete failed on '{collection_name}': {e}") from e

    async def search(
        self,
        collection_name: str,
        vector: List[float],
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> List[ScoredEntry]:
        try:
            response = await self.client.query_points(
                collection_name=collection_name,
                query=vector,
                limit=limit,
                score_threshold=score_threshold if score_threshold > 0.0 else None,
                with_payload=True,
                with_vectors=True,
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant search failed on '{collection_name}': {e}") from e

        results = [
            ScoredEntry(entry=self._record_to_entry(point), score=float(point.score or 0.0))
            for point in response.points
        ]
        logger.debug(
            "Search '%s' returned %d results%s",
            collection_name,
            len(results),
            f" (top score={results[0].score:.4f})" if results else "",
        )
        return results

    async def scroll(
        self,
        collection_name: str,
        limit: int = 100,
        offset: Optional[str] = None,
    ) -> Tuple[List[CacheEntry], Optional[str]]:
        try:
            records, next_offset = await self.client.scroll(
                collection_name=collection_name,
                limit=limit,
                offset=offset,
                with_payload=True,
                with_vectors=True,
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant scroll failed on '{collection_name}': {e}") from e
        entries = [self._record_to_entry(r) for r in records]
        return entries, str(next_offset) if next_offset is not None else None

    async def count(self, collection_name: str) -> int:
        try:
            result = await self.client.count(collection_name=collection_name)
            return result.count
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Qdrant count failed on '{collection_name}': {e}") from e

    async def close(self) -> None:
        """Close the Qdrant client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._initialized_collections.clear()
            logger.info("Qdrant client closed")

    # --- Private methods ---

    @staticmethod
    def point_id(fingerprint: str) -> str:
        return str(uuid.uuid5(_FINGERPRINT_NAMESPACE, fingerprint))

    def _build_client(self) -> AsyncQdrantClient:
        mode = self._settings.qdrant_mode
        if mode == "memory":
            return AsyncQdrantClient(":memory:")
        elif mode == "docker":
            url = self._settings.qdrant_url or (
                f"http://{self._settings.qdrant_host}:{self._settings.qdrant_port}"
            )
            return AsyncQdrantClient(url=url)
        elif mode == "cloud":
            return AsyncQdrantClient(
                url=self._settings.qdrant_url,
                api_key=self._settings.qdrant_api_key,
            )
        raise StorageInitializationError(f"Unknown qdrant_mode: '{mode}'")

    @classmethod
    def _entry_to_point(cls, entry: CacheEntry) -> PointStruct:
        return PointStruct(
            id=cls.point_id(entry.fingerprint),
            vector=entry.vector,
            payload=entry.model_dump(mode="json", exclude={"vector"}),
        )

    @staticmethod
    def _record_to_entry(record) -> CacheEntry:
        payload = dict(record.payload or {})
        vector = record.vector if isinstance(record.vector, list) else []
        return CacheEntry.model_validate({**payload, "vector": vector})
