"""OpenAI embeddings adapter implementing the BaseEmbedder interface."""

import logging
from typing import Any, Dict, List, Optional, Union

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
    RateLimitError,
)

from croupier.exceptions import EmbeddingError, EmbeddingUnavailable
from croupier.interfaces.embedder import BaseEmbedder

logger = logging.getLogger(__name__)


class OpenAIAdapter(BaseEmbedder):
    """Embedding adapter using the OpenAI Embeddings API.

    Outages (connection errors, timeouts, 5xx, rate limits) raise
    :class:`EmbeddingUnavailable` so callers can fall back to previously
    computed vectors or keyword-only ranking.

    Args:
        model_name: OpenAI model identifier. Defaults to "text-embedding-3-small".
        api_key: OpenAI API key. If None, reads from OPENAI_API_KEY env var.
        dimensions: Optional dimension override (for models that support it).
        base_url: Optional endpoint override (Azure, proxies).
    """

    # Embeddings endpoint limit on inputs per request
    max_batch_size = 2048

    _KNOWN_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
    ):
        self._model_name = model_name
        self._dimensions = dimensions
        try:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        except Exception as e:
            raise EmbeddingError(f"Failed to initialize OpenAI client: {e}") from e
        logger.info("OpenAI embedding client initialized for model '%s'", model_name)

    @property
    def dimension(self) -> int:
        if self._dimensions:
            return self._dimensions
        dim = self._KNOWN_DIMENSIONS.get(self._model_name)
        if dim is None:
            raise EmbeddingError(
                f"Unknown dimension for model '{self._model_name}'. "
                "Pass 'dimensions' explicitly."
            )
        return dim

    @property
    def model_name(self) -> str:
        return self._model_name

    async def aembed(self, text: str) -> List[float]:
        vectors = await self._create(text)
        return vectors[0]

    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await self._create(texts)

    async def _create(self, payload: Union[str, List[str]]) -> List[List[float]]:
        kwargs: Dict[str, Any] = {"input": payload, "model": self._model_name}
        if self._dimensions is not None:
            kwargs["dimensions"] = self._dimensions
        try:
            response = await self._client.embeddings.create(**kwargs)
        except AuthenticationError as e:
            logger.error("OpenAI authentication failed: %s", e)
            raise EmbeddingError(f"OpenAI authentication failed: {e}") from e
        except (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError) as e:
            logger.warning("OpenAI embeddings unavailable: %s", e)
            raise EmbeddingUnavailable(f"OpenAI embeddings unavailable: {e}") from e
        except Exception as e:
            raise EmbeddingError(
                f"Failed to embed with OpenAI model '{self._model_name}': {e}"
            ) from e
        # Sort by index to preserve input order
        return [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
