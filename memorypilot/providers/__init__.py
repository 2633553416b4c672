"""
Embedding providers.

Providers register themselves with the global registry on import;
``get_registry().create_embedding(name, params)`` builds one from config.
"""

from .base import EmbeddingProvider, ProviderRegistry, get_registry

__all__ = [
    "EmbeddingProvider",
    "ProviderRegistry",
    "get_registry",
]
