"""Embedding provider for keyword-only stores."""

from ..errors import UnavailableError
from .base import get_registry


class NullEmbedding:
    """Never produces a vector; every search degrades to keyword scoring."""

    dimension = None

    def __init__(self, **params):
        pass

    @property
    def model_name(self) -> str:
        return "none"

    def embed(self, text: str) -> list[float]:
        raise UnavailableError("Embeddings are disabled (provider 'none')")


get_registry().register_embedding("none", NullEmbedding)
