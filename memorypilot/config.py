"""
Configuration management for memorypilot stores.

Each store directory holds one memorypilot.toml.
It names the embedding provider and the hybrid search weights.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "memorypilot.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "memories.db"

STORE_PATH_ENV = "MEMORYPILOT_STORE_PATH"
DEFAULT_STORE_DIRNAME = ".memorypilot"

DEFAULT_EMBEDDING_PROVIDER = "ollama"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
DEFAULT_EMBEDDING_TIMEOUT = 5.0

DEFAULT_KEYWORD_WEIGHT = 0.4
DEFAULT_SEMANTIC_WEIGHT = 0.6


@dataclass
class EmbeddingConfig:
    """Which embedding provider to use, plus its parameters."""
    name: str = DEFAULT_EMBEDDING_PROVIDER
    model: str = DEFAULT_EMBEDDING_MODEL
    base_url: Optional[str] = None
    timeout: float = DEFAULT_EMBEDDING_TIMEOUT
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchConfig:
    """Hybrid search fusion weights and result defaults."""
    keyword_weight: float = DEFAULT_KEYWORD_WEIGHT
    semantic_weight: float = DEFAULT_SEMANTIC_WEIGHT
    default_limit: int = 5

    def validate(self) -> None:
        if self.keyword_weight < 0 or self.semantic_weight < 0:
            raise ValueError("Search weights must be non-negative")
        if self.keyword_weight == 0 and self.semantic_weight == 0:
            raise ValueError("At least one search weight must be positive")
        if self.default_limit <= 0:
            raise ValueError("default_limit must be positive")


@dataclass
class StoreConfig:
    """Everything memorypilot.toml says about one store."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Where memorypilot.toml lives."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite memory database."""
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """True once the store has been initialised."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    Priority:
    1. MEMORYPILOT_STORE_PATH environment variable
    2. ~/.memorypilot
    """
    env_path = os.environ.get(STORE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / DEFAULT_STORE_DIRNAME


def load_config(store_path: Path) -> StoreConfig:
    """
    Read memorypilot.toml from ``store_path``, filling gaps with defaults.

    Raises:
        FileNotFoundError: No memorypilot.toml in the directory
        ValueError: Unparseable TOML, a newer version, or bad search weights
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    emb = dict(data.get("embedding", {}))
    embedding = EmbeddingConfig(
        name=emb.pop("name", DEFAULT_EMBEDDING_PROVIDER),
        model=emb.pop("model", DEFAULT_EMBEDDING_MODEL),
        base_url=emb.pop("base_url", None),
        timeout=float(emb.pop("timeout", DEFAULT_EMBEDDING_TIMEOUT)),
        params=emb,
    )

    srch = data.get("search", {})
    search = SearchConfig(
        keyword_weight=float(srch.get("keyword_weight", DEFAULT_KEYWORD_WEIGHT)),
        semantic_weight=float(srch.get("semantic_weight", DEFAULT_SEMANTIC_WEIGHT)),
        default_limit=int(srch.get("default_limit", 5)),
    )
    search.validate()

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=embedding,
        search=search,
    )


def save_config(config: StoreConfig) -> None:
    """Write ``config`` as memorypilot.toml, creating the store directory."""
    config.path.mkdir(parents=True, exist_ok=True)

    embedding: dict[str, Any] = {
        "name": config.embedding.name,
        "model": config.embedding.model,
        "timeout": config.embedding.timeout,
    }
    if config.embedding.base_url:
        embedding["base_url"] = config.embedding.base_url
    embedding.update(config.embedding.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": embedding,
        "search": {
            "keyword_weight": config.search.keyword_weight,
            "semantic_weight": config.search.semantic_weight,
            "default_limit": config.search.default_limit,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """Open the store config, initialising it with defaults on first use."""
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
