"""
Embedding provider interface and the name-based provider registry.

Providers are matched structurally: any object with ``dimension``,
``model_name`` and ``embed`` works, no base class needed.
"""

from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Turns text into a vector.

    Stored vectors are tagged with ``model_name``; a query vector is only
    compared with vectors carrying the same tag.

    ``embed`` raises UnavailableError when the model can't answer right
    now (server down, timeout, garbage response). Anything else it raises
    is a bug and propagates.

    A minimal provider:

        class FixedEmbedding:
            dimension = 3
            model_name = "fixed"

            def embed(self, text):
                return [1.0, 0.0, 0.0]
    """

    @property
    def dimension(self) -> int | None:
        """Vector length, or None until the first vector has been seen."""
        ...

    @property
    def model_name(self) -> str:
        """Model identity, e.g. ``ollama:nomic-embed-text``."""
        ...

    def embed(self, text: str) -> list[float]:
        """Vector for ``text``. Raises UnavailableError if the model is unreachable."""
        ...


ProviderFactory = Callable[..., EmbeddingProvider]


class ProviderRegistry:
    """
    Maps the ``[embedding] name`` from memorypilot.toml to a provider factory.

    Built-in providers live in sibling modules and register on import;
    the import is deferred until a provider is first requested.

        registry.register_embedding("ollama", OllamaEmbedding)
        registry.create_embedding("ollama", {"model": "nomic-embed-text"})
    """

    def __init__(self):
        self._factories: dict[str, ProviderFactory] = {}
        self._builtins_loaded = False

    def _load_builtins(self) -> None:
        if not self._builtins_loaded:
            self._builtins_loaded = True
            from . import null, ollama  # noqa: F401

    def register_embedding(self, name: str, factory: ProviderFactory) -> None:
        self._factories[name] = factory

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """
        Instantiate the provider registered as ``name`` with ``params``.

        Raises:
            ValueError: Unknown name, or parameters the provider doesn't accept
        """
        self._load_builtins()
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(sorted(self._factories)) or "none"
            raise ValueError(f"Unknown embedding provider: '{name}' (known: {known})")
        try:
            return factory(**(params or {}))
        except TypeError as e:
            raise ValueError(f"Invalid parameters for embedding provider '{name}': {e}") from e

    def list_embedding_providers(self) -> list[str]:
        self._load_builtins()
        return sorted(self._factories)


_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """The process-wide registry the built-in providers register with."""
    return _registry
