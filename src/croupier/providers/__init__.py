"""LLM providers.

Concrete providers are imported lazily so the OpenAI SDK is only loaded
when a provider is actually built.
"""

from typing import List

from croupier.config import Settings
from croupier.exceptions import ConfigurationError
from croupier.interfaces.llm import BaseLLMProvider


def get_openai_provider():
    """Import and return the OpenAIProvider class."""
    from croupier.providers.openai_provider import OpenAIProvider

    return OpenAIProvider


def build_providers(settings: Settings) -> List[BaseLLMProvider]:
    """Instantiate one provider per entry in ``settings.providers``."""
    providers: List[BaseLLMProvider] = []
    for config in settings.providers:
        if config.kind == "openai":
            providers.append(get_openai_provider()(config))
        else:
            raise ConfigurationError(f"Unsupported provider kind '{config.kind}'")
    return providers


__all__ = ["build_providers", "get_openai_provider"]
