"""Embedding service and embedder adapters (FastEmbed, OpenAI).

Adapters are imported lazily to avoid pulling in optional dependencies at
package level.
"""

from croupier.embeddings.service import EmbeddingService


def get_fastembed_adapter():
    """Import and return the FastEmbedAdapter class."""
    from croupier.embeddings.fastembed_adapter import FastEmbedAdapter

    return FastEmbedAdapter


def get_openai_adapter():
    """Import and return the OpenAIAdapter class."""
    from croupier.embeddings.openai_adapter import OpenAIAdapter

    return OpenAIAdapter


__all__ = ["EmbeddingService", "get_fastembed_adapter", "get_openai_adapter"]
