"""BaseEmbedder abstract class defining the embedder interface."""

from abc import ABC, abstractmethod
from typing import List, Sequence
import asyncio


class BaseEmbedder(ABC):
    """Abstract base class for all embedding providers.

    ``max_batch_size`` caps how many texts :meth:`aembed_chunked` sends to
    :meth:`aembed_batch` in one call; backends with a request-size limit
    override it.
    """

    max_batch_size: int = 256

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the vector dimension (e.g. 384, 768, 1536)."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier for logging/debugging."""
        ...

    @abstractmethod
    async def aembed(self, text: str) -> List[float]:
        """Generate an embedding for a single text string.

        Args:
            text: Input text to embed. Must be non-empty.

        Returns:
            A list of floats with length == self.dimension.

        Raises:
            EmbeddingError: If the embedding generation fails.
            EmbeddingUnavailable: If the backend cannot be reached at all.
        """
        ...

    @abstractmethod
    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts.

        Returns:
            One embedding per input text. Order is preserved:
            result[i] corresponds to texts[i].

        Raises:
            EmbeddingError: If any embedding generation fails.
        """
        ...

    async def aembed_chunked(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed *texts* in chunks of at most ``max_batch_size``, preserving order."""
        size = max(1, self.max_batch_size)
        vectors: List[List[float]] = []
        for start in range(0, len(texts), size):
            vectors.extend(await self.aembed_batch(list(texts[start : start + size])))
        return vectors

    # --- Sync convenience wrappers ---

    def embed(self, text: str) -> List[float]:
        """Synchronous wrapper for aembed."""
        return self._run_sync(self.aembed(text))

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Synchronous wrapper for aembed_batch."""
        return self._run_sync(self.aembed_batch(texts))

    @staticmethod
    def _run_sync(coro):
        """Run an async coroutine synchronously.

        Handles the case where an event loop is already running
        (e.g., inside Jupyter notebooks).
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)
        else:
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
