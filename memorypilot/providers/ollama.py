"""
Embedding provider backed by a local Ollama server.

Respects OLLAMA_HOST env var (default: http://localhost:11434).
"""

import logging
import math
import os
from typing import Optional

import requests

from ..errors import UnavailableError
from .base import get_registry

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def ollama_base_url(base_url: Optional[str] = None) -> str:
    """Resolve the Ollama base URL: explicit value, OLLAMA_HOST, or default."""
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


class OllamaEmbedding:
    """
    Embedding provider using Ollama's /api/embed endpoint.

    Every call is bounded by ``timeout`` seconds; a slow or missing server
    is reported as UnavailableError so search can fall back to keywords.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: Optional[str] = None,
        timeout: float = 5.0,
    ):
        self.model = model
        self.base_url = ollama_base_url(base_url)
        self.timeout = timeout
        self._dimension: Optional[int] = None
        self._session = requests.Session()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def model_name(self) -> str:
        return f"ollama:{self.model}"

    def embed(self, text: str) -> list[float]:
        """Embed one text. Raises UnavailableError on any transport or format problem."""
        try:
            response = self._session.post(
                f"{self.base_url}/api/embed",
                json={"model": self.model, "input": text},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise UnavailableError(
                f"Ollama embedding timed out after {self.timeout}s ({self.base_url})"
            ) from e
        except requests.RequestException as e:
            raise UnavailableError(f"Cannot reach Ollama at {self.base_url}: {e}") from e

        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise UnavailableError(
                f"Ollama embedding failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )

        try:
            vector = [float(v) for v in response.json()["embeddings"][0]]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UnavailableError(f"Malformed Ollama embedding response: {e}") from e
        if not vector or not all(math.isfinite(v) for v in vector):
            raise UnavailableError("Ollama returned an empty or non-finite embedding")

        if self._dimension is None:
            self._dimension = len(vector)
        elif len(vector) != self._dimension:
            raise UnavailableError(
                f"Ollama embedding dimension changed: {len(vector)} != {self._dimension}"
            )
        return vector

    def close(self) -> None:
        self._session.close()


get_registry().register_embedding("ollama", OllamaEmbedding)
