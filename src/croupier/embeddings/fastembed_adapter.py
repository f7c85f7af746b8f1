"""FastEmbed adapter: local ONNX sentence embeddings behind BaseEmbedder."""

import asyncio
import logging
from typing import Iterable, List, Optional

try:
    from fastembed import TextEmbedding
except ImportError:
    raise ImportError(
        "FastEmbed is required for FastEmbedAdapter. "
        "Install it with: pip install croupier[fastembed]"
    )

from croupier.exceptions import EmbeddingError
from croupier.interfaces.embedder import BaseEmbedder

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class FastEmbedAdapter(BaseEmbedder):
    """Local embeddings via FastEmbed (384 dimensions for the default model).

    The model is loaded eagerly so that a missing or broken model surfaces
    at construction time rather than on the first request.

    Args:
        model_name: Any model from ``TextEmbedding.list_supported_models()``.
        max_length: Maximum token length.
        cache_dir: Optional directory for downloaded model files.

    Raises:
        EmbeddingError: If the model cannot be loaded.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        max_length: int = 512,
        cache_dir: Optional[str] = None,
    ):
        self._model_name = model_name
        try:
            self._model = TextEmbedding(
                model_name=model_name, max_length=max_length, cache_dir=cache_dir
            )
            self._dimension = len(self._vectors(["dimension check"])[0])
        except Exception as e:
            raise EmbeddingError(f"Failed to load embedding model '{model_name}': {e}") from e
        logger.info("FastEmbed model '%s' loaded, dimension=%d", model_name, self._dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    async def aembed(self, text: str) -> List[float]:
        vectors = await self.aembed_batch([text])
        return vectors[0]

    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        """FastEmbed is synchronous; run it in a worker thread."""
        try:
            return await asyncio.to_thread(self._vectors, texts)
        except Exception as e:
            raise EmbeddingError(
                f"FastEmbed model '{self._model_name}' failed on {len(texts)} text(s): {e}"
            ) from e

    def _vectors(self, texts: Iterable[str]) -> List[List[float]]:
        return [
            vec.tolist() if hasattr(vec, "tolist") else list(vec)
            for vec in self._model.embed(list(texts))
        ]
