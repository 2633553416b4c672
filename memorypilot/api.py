"""
Core API for memorypilot.

MemoryPilot ties the store, the embedding gateway and the hybrid search
engine together. The MCP server and the CLI both go through it.

Example:
    mp = MemoryPilot()
    mp.remember("Use Redis for caching", type="decision")
    result = mp.recall("caching")
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .embeddings import EmbeddingGateway
from .errors import MemoryPilotError
from .logging_config import configure_ops_log, remove_ops_log
from .memory_store import MemoryStore
from .providers.base import EmbeddingProvider, get_registry
from .search import HybridSearchEngine, query_terms
from .types import (
    Memory,
    MemoryScope,
    MemoryType,
    RecallFilters,
    RecallRequest,
    Source,
    SourceType,
    Stats,
)

logger = logging.getLogger(__name__)


@dataclass
class RememberResult:
    """A stored memory and whether its embedding was computed."""
    memory: Memory
    embedded: bool


@dataclass
class RecallResult:
    """Ranked memories plus the retrieval mode that produced them."""
    memories: list[Memory]
    mode: str  # "hybrid" or "keyword"


class MemoryPilot:
    """
    Persistent memory for coding assistants, with hybrid recall.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        store: Optional[MemoryStore] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> None:
        """
        Open (or create) a memory store.

        Args:
            store_path: Store directory. Defaults to MEMORYPILOT_STORE_PATH
                or ~/.memorypilot.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            store: Injected MemoryStore (skips opening the default database).
            embedding_provider: Injected provider (skips the registry lookup).
        """
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser().resolve() if store_path else get_default_store_path()
            self._config = load_or_create_config(path)
        self._store_path = self._config.path

        self._ops_log_handler = configure_ops_log(self._store_path)

        self._store = store if store is not None else MemoryStore(self._config.database_path)

        if embedding_provider is None:
            emb = self._config.embedding
            params = dict(emb.params)
            if emb.name == "ollama":
                params.update(model=emb.model, base_url=emb.base_url, timeout=emb.timeout)
            embedding_provider = get_registry().create_embedding(emb.name, params)
        self._gateway = EmbeddingGateway(embedding_provider)

        self._engine = HybridSearchEngine(
            self._store,
            keyword_weight=self._config.search.keyword_weight,
            semantic_weight=self._config.search.semantic_weight,
            embedding_model=self._gateway.model_name,
        )

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def gateway(self) -> EmbeddingGateway:
        return self._gateway

    @property
    def engine(self) -> HybridSearchEngine:
        return self._engine

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def remember(
        self,
        content: str,
        *,
        type: MemoryType | str = MemoryType.FACT,
        topics: Optional[list[str]] = None,
        scope: MemoryScope | str = MemoryScope.PERSONAL,
        project: Optional[str] = None,
        importance: float = 1.0,
        confidence: float = 1.0,
        source_type: SourceType | str = SourceType.MANUAL,
        source_reference: str = "",
    ) -> RememberResult:
        """
        Store a memory, then try to embed it.

        The write is durable once ``create`` returns; a failed embedding
        leaves the memory searchable by keyword and is fixed by ``reembed``.

        Raises:
            ValidationError: If the memory is rejected by the store
        """
        memory = Memory(
            content=content,
            type=type,
            topics=list(topics or []),
            scope=scope,
            project=project,
            importance=importance,
            confidence=confidence,
            source=Source(type=source_type, reference=source_reference),
        )
        memory_id = self._store.create(memory)

        embedded = self._embed_memory(memory_id, memory.content)
        if embedded:
            memory = self._store.peek(memory_id) or memory
        return RememberResult(memory=memory, embedded=embedded)

    def _embed_memory(self, memory_id: str, content: str) -> bool:
        result = self._gateway.embed(content)
        if not result.ok:
            logger.info("Stored %s without embedding: %s", memory_id, result.error)
            return False
        try:
            self._store.update_embedding(memory_id, result.vector, result.model)
        except MemoryPilotError as e:
            # the memory itself is committed; reembed can fill the vector in later
            logger.warning("Stored %s but could not save its embedding: %s", memory_id, e)
            return False
        return True

    def reembed(self, limit: Optional[int] = None) -> dict[str, int]:
        """
        Embed memories that have no embedding from the active model.

        Stops at the first memory whose vector is unavailable or cannot be saved.

        Returns:
            Counts: embedded, skipped (provider unavailable), remaining
        """
        pending = self._store.list_missing_embeddings(self._gateway.model_name, limit=limit)
        embedded = 0
        for memory_id, content in pending:
            if not self._embed_memory(memory_id, content):
                break
            embedded += 1
        remaining = len(self._store.list_missing_embeddings(self._gateway.model_name))
        logger.info("Re-embedded %d memories, %d remaining", embedded, remaining)
        return {
            "embedded": embedded,
            "skipped": len(pending) - embedded,
            "remaining": remaining,
        }

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def recall(
        self,
        query: str,
        *,
        limit: Optional[int] = None,
        filters: Optional[RecallFilters] = None,
    ) -> RecallResult:
        """
        Find memories relevant to a query, most relevant first.

        Uses hybrid search when the query can be embedded, otherwise the
        store's keyword recall with the same query and limit.

        Raises:
            InvalidQueryError: If the query is empty or has no words
        """
        query_terms(query)
        if limit is None or limit <= 0:
            limit = self._config.search.default_limit
        filters = filters or RecallFilters()

        embedded = self._gateway.embed(query)
        if embedded.ok:
            memories = self._engine.search(query, embedded.vector, limit, filters)
            return RecallResult(memories=memories, mode="hybrid")

        logger.debug("Falling back to keyword recall: %s", embedded.error)
        memories = self._store.recall(RecallRequest(query=query, limit=limit, filters=filters))
        return RecallResult(memories=memories, mode="keyword")

    def get(self, id: str) -> Memory:
        """Get a memory by id (records an access). Raises NotFoundError."""
        return self._store.get(id)

    def status(self) -> Stats:
        """Aggregate statistics for the store."""
        return self._store.stats()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the database, the provider session and the ops log."""
        self._store.close()
        self._gateway.close()
        if self._ops_log_handler is not None:
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
