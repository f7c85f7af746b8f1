"""Cache storage backends."""

from croupier.backends.memory import InMemoryCacheBackend


def get_qdrant_backend():
    """Import and return the QdrantBackend class."""
    from croupier.backends.qdrant import QdrantBackend

    return QdrantBackend


__all__ = ["InMemoryCacheBackend", "get_qdrant_backend"]
