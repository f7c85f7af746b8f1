"""Abstract base classes for embedders, cache stores, LLM providers and collaborators."""

from croupier.interfaces.embedder import BaseEmbedder
from croupier.interfaces.storage import CacheStorageBackend
from croupier.interfaces.llm import BaseLLMProvider
from croupier.interfaces.collaborators import (
    BusinessRuleService,
    MetadataRepository,
    PromptTemplateStore,
)

__all__ = [
    "BaseEmbedder",
    "CacheStorageBackend",
    "BaseLLMProvider",
    "BusinessRuleService",
    "MetadataRepository",
    "PromptTemplateStore",
]
