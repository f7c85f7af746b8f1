"""Croupier - natural-language to SQL generation for gambling analytics."""

__version__ = "0.1.0"

from croupier.core import Croupier
from croupier.config import Settings
from croupier.types import (
    BusinessContext,
    CacheHitKind,
    ErrorKind,
    GenerationResult,
    QueryComplexity,
    QueryIntent,
)
from croupier.interfaces import (
    BaseEmbedder,
    BaseLLMProvider,
    BusinessRuleService,
    CacheStorageBackend,
    MetadataRepository,
    PromptTemplateStore,
)
from croupier.logging import setup_logging

__all__ = [
    "Croupier", "Settings", "BusinessContext", "CacheHitKind", "ErrorKind",
    "GenerationResult", "QueryComplexity", "QueryIntent", "BaseEmbedder",
    "BaseLLMProvider", "BusinessRuleService", "CacheStorageBackend",
    "MetadataRepository", "PromptTemplateStore", "setup_logging",
]
