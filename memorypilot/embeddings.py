"""
Embedding gateway: best-effort text-to-vector conversion.

Embeddings are an enhancement. The gateway never raises for an
unreachable model; it returns an EmbedResult and the caller branches on
``result.ok`` to either use the vector or take its fallback path.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .errors import UnavailableError
from .providers.base import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbedResult:
    """Outcome of an embedding call: a vector, or the reason there is none."""
    vector: Optional[list[float]] = None
    model: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None

    @classmethod
    def unavailable(cls, reason: str) -> "EmbedResult":
        return cls(error=reason)


class EmbeddingGateway:
    """Wraps an EmbeddingProvider and converts UnavailableError into results."""

    def __init__(self, provider: EmbeddingProvider):
        self._provider = provider

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    def embed(self, text: str) -> EmbedResult:
        """Embed text. Returns an unavailable result instead of raising."""
        if not text or not text.strip():
            return EmbedResult.unavailable("empty text")
        try:
            vector = self._provider.embed(text)
        except UnavailableError as e:
            logger.debug("Embedding unavailable: %s", e)
            return EmbedResult.unavailable(str(e))
        if not vector:
            return EmbedResult.unavailable("provider returned no vector")
        if not all(math.isfinite(v) for v in vector):
            logger.warning("Discarding embedding with non-finite values from %s", self._provider.model_name)
            return EmbedResult.unavailable("provider returned non-finite values")
        return EmbedResult(vector=list(vector), model=self._provider.model_name)

    def close(self) -> None:
        close = getattr(self._provider, "close", None)
        if close is not None:
            close()
