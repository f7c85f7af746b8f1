"""BaseLLMProvider abstract class defining the LLM provider interface."""

from abc import ABC, abstractmethod

from croupier.config import ProviderSettings
from croupier.types import LLMResponse


class BaseLLMProvider(ABC):
    """Abstract base class for text-generation providers."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Identifier matching ``ProviderSettings.provider_id``."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, config: ProviderSettings) -> LLMResponse:
        """Generate a completion for *prompt*.

        Args:
            prompt: The fully assembled prompt.
            config: Provider configuration (model, temperature, max tokens).

        Returns:
            The response text with token usage and latency.

        Raises:
            ProviderTimeout, ProviderRateLimited, ProviderServerError:
                Transient failures; the orchestrator retries them.
            ProviderAuthError, ProviderResponseError:
                Permanent failures; the orchestrator falls back.
        """
        ...

    async def close(self) -> None:
        """Release client resources. No-op by default."""
        return None
