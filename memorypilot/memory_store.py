"""
Memory store using SQLite.

The store is the single owner of persisted memories. It is shared on
disk between independent processes (the MCP server a coding assistant
talks to, background ingestion writing new memories), so atomicity
comes from SQLite itself rather than from in-process locks:

- WAL journal: readers never block writers and only see committed rows.
- Every write runs in its own BEGIN IMMEDIATE transaction, taking the
  database write lock up front; busy_timeout makes competing writers
  wait instead of failing.
- Embedding updates touch only the embedding columns, so a concurrent
  create and embed never overwrite each other's fields.
"""

import json
import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .errors import InternalError, NotFoundError, ValidationError
from .search import memory_haystack, query_terms, rank_keyword
from .types import (
    Memory,
    MemoryScope,
    MemoryType,
    RecallFilters,
    RecallRequest,
    Source,
    SourceType,
    Stats,
    new_memory_id,
    normalize_topics,
    summarize_content,
    utc_now,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Milliseconds a writer waits for the lock held by another process
BUSY_TIMEOUT_MS = 5000

_COLUMNS = """
    id, type, content, summary, scope, project, source_json,
    confidence, importance, topics_json,
    embedding_json, embedding_model,
    created_at, last_accessed_at, access_count
"""


class MemoryStore:
    """
    SQLite-backed store for memory records and their embeddings.

    Safe to open from several processes on the same file. Within one
    process the connection is shared and guarded by a lock.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Open the database and create the schema if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # isolation_level=None gives manual transaction control
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None, timeout=BUSY_TIMEOUT_MS / 1000,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
            self._conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise InternalError(f"Cannot open memory store {self._db_path}: {e}") from e

        with self._write() as conn:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version > SCHEMA_VERSION:
                raise InternalError(
                    f"Memory store schema {version} is newer than supported ({SCHEMA_VERSION})"
                )
            if version < SCHEMA_VERSION:
                self._create_schema(conn)
                conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                content TEXT NOT NULL,
                summary TEXT NOT NULL,
                scope TEXT NOT NULL DEFAULT 'personal',
                project TEXT,
                source_json TEXT NOT NULL DEFAULT '{}',
                confidence REAL NOT NULL DEFAULT 1.0,
                importance REAL NOT NULL DEFAULT 1.0,
                topics_json TEXT NOT NULL DEFAULT '[]',
                search_text TEXT NOT NULL DEFAULT '',
                embedding_json TEXT,
                embedding_model TEXT,
                embedding_dim INTEGER,
                created_at TEXT NOT NULL,
                last_accessed_at TEXT NOT NULL,
                access_count INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_scope ON memories(scope)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_project ON memories(project)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at)")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one IMMEDIATE transaction; roll back on any error."""
        conn = self._connection()
        with self._lock:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise InternalError(f"Memory store is busy: {e}") from e
            try:
                yield conn
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise InternalError(f"Memory store write failed: {e}") from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    conn.execute("ROLLBACK")
                    raise InternalError(f"Memory store commit failed: {e}") from e

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        with self._lock:
            try:
                yield conn
            except sqlite3.Error as e:
                raise InternalError(f"Memory store read failed: {e}") from e

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise InternalError("Memory store is closed")
        return self._conn

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create(self, memory: Memory) -> str:
        """
        Validate and persist a new memory.

        Assigns ``id``, ``summary``, ``created_at`` and ``last_accessed_at``
        on the passed object; any id it already carried is replaced.

        Args:
            memory: The memory to store

        Returns:
            The assigned id

        Raises:
            ValidationError: Empty content, unknown type/scope/source type,
                or confidence/importance outside [0, 1]
        """
        if not isinstance(memory.content, str) or not memory.content.strip():
            raise ValidationError("Memory content must not be empty")
        memory.type = MemoryType.parse(memory.type)
        memory.scope = MemoryScope.parse(memory.scope)
        memory.source = Source(
            type=SourceType.parse(memory.source.type),
            reference=memory.source.reference or "",
            timestamp=memory.source.timestamp or utc_now(),
        )
        memory.confidence = _unit_interval("confidence", memory.confidence)
        memory.importance = _unit_interval("importance", memory.importance)
        memory.topics = normalize_topics(memory.topics)
        memory.project = (memory.project or "").strip() or None

        embedding_json = None
        embedding_dim = None
        if memory.embedding is not None:
            memory.embedding = _validate_vector(memory.embedding)
            embedding_json = json.dumps(memory.embedding)
            embedding_dim = len(memory.embedding)

        now = utc_now()
        memory.id = new_memory_id()
        memory.summary = summarize_content(memory.content)
        memory.created_at = now
        memory.last_accessed_at = now
        memory.access_count = 0

        with self._write() as conn:
            conn.execute(f"""
                INSERT INTO memories ({_COLUMNS}, search_text, embedding_dim)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                memory.id,
                memory.type.value,
                memory.content,
                memory.summary,
                memory.scope.value,
                memory.project,
                json.dumps(memory.source.to_dict(), ensure_ascii=False),
                memory.confidence,
                memory.importance,
                json.dumps(memory.topics, ensure_ascii=False),
                embedding_json,
                memory.embedding_model if embedding_json else None,
                memory.created_at,
                memory.last_accessed_at,
                memory.access_count,
                memory_haystack(memory.content, memory.summary, memory.topics),
                embedding_dim,
            ))

        logger.info("Created memory %s type=%s", memory.id, memory.type.value)
        return memory.id

    def update_embedding(
        self,
        id: str,
        vector: Sequence[float],
        model: Optional[str] = None,
    ) -> None:
        """
        Replace a memory's embedding. No other field changes.

        Writing the same vector again leaves the record unchanged.

        Args:
            id: Memory identifier
            vector: Embedding vector
            model: Identity of the model that produced the vector

        Raises:
            NotFoundError: If no memory has this id
            ValidationError: If the vector is empty or has non-finite values
        """
        vector = _validate_vector(vector)
        with self._write() as conn:
            cursor = conn.execute("""
                UPDATE memories
                SET embedding_json = ?, embedding_model = ?, embedding_dim = ?
                WHERE id = ?
            """, (json.dumps(vector), model, len(vector), id))
            if cursor.rowcount == 0:
                raise NotFoundError(id)
        logger.debug("Updated embedding for %s (%s, dim=%d)", id, model, len(vector))

    def touch(self, ids: Sequence[str]) -> list[Memory]:
        """
        Record a recall of each memory: bump access_count and last_accessed_at.

        Returns:
            The updated memories in the order of ``ids`` (unknown ids omitted)
        """
        if not ids:
            return []
        unique = list(dict.fromkeys(ids))
        placeholders = ",".join("?" * len(unique))
        now = utc_now()
        with self._write() as conn:
            conn.execute(f"""
                UPDATE memories
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE id IN ({placeholders})
            """, (now, *unique))
            rows = conn.execute(f"""
                SELECT {_COLUMNS} FROM memories
                WHERE id IN ({placeholders})
            """, unique).fetchall()

        by_id = {row["id"]: _row_to_memory(row) for row in rows}
        return [by_id[i] for i in unique if i in by_id]

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Memory:
        """
        Look up a memory by id. Counts as a recall.

        Raises:
            NotFoundError: If no memory has this id
        """
        touched = self.touch([id])
        if not touched:
            raise NotFoundError(id)
        return touched[0]

    def peek(self, id: str) -> Optional[Memory]:
        """Look up a memory without recording an access."""
        with self._read() as conn:
            row = conn.execute(f"""
                SELECT {_COLUMNS} FROM memories WHERE id = ?
            """, (id,)).fetchone()
        return _row_to_memory(row) if row is not None else None

    def exists(self, id: str) -> bool:
        """Check if a memory exists."""
        with self._read() as conn:
            row = conn.execute("SELECT 1 FROM memories WHERE id = ?", (id,)).fetchone()
        return row is not None

    def recall(self, request: RecallRequest) -> list[Memory]:
        """
        Keyword-only retrieval, most relevant first, truncated to the limit.

        Every returned memory has its access recorded.

        Raises:
            InvalidQueryError: If the query is empty or has no words
        """
        terms = query_terms(request.query)
        candidates = self.select_candidates(terms, request.filters)
        ranked = rank_keyword(terms, candidates)[:request.effective_limit]
        logger.debug("Keyword recall %r: %d candidates, %d returned",
                     request.query, len(candidates), len(ranked))
        return self.touch([s.memory.id for s in ranked])

    def select_candidates(
        self,
        terms: Sequence[str],
        filters: Optional[RecallFilters] = None,
        *,
        embedding_model: Optional[str] = None,
        embedding_dim: Optional[int] = None,
    ) -> list[Memory]:
        """
        Memories passing the filters that could score for a query.

        A row is a candidate if its text contains any of ``terms``, or,
        when ``embedding_dim`` is given, if it carries an embedding of that
        dimension (from ``embedding_model`` when that is given too).
        """
        filters = filters or RecallFilters()
        where: list[str] = []
        params: list = []

        if filters.types:
            types = [MemoryType.parse(t).value for t in filters.types]
            where.append(f"type IN ({','.join('?' * len(types))})")
            params.extend(types)
        if filters.scope:
            where.append("scope = ?")
            params.append(MemoryScope.parse(filters.scope).value)
        if filters.project:
            where.append("project = ?")
            params.append(filters.project)

        match = [r"search_text LIKE ? ESCAPE '\'" for _ in terms]
        params.extend(f"%{_escape_like(t)}%" for t in terms)
        if embedding_dim is not None:
            if embedding_model is not None:
                match.append("(embedding_dim = ? AND embedding_model = ?)")
                params.extend([embedding_dim, embedding_model])
            else:
                match.append("embedding_dim = ?")
                params.append(embedding_dim)
        if match:
            where.append("(" + " OR ".join(match) + ")")

        sql = f"SELECT {_COLUMNS} FROM memories"
        if where:
            sql += " WHERE " + " AND ".join(where)

        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()

        memories = [_row_to_memory(row) for row in rows]
        if filters.topics:
            wanted = {t.casefold() for t in filters.topics}
            memories = [
                m for m in memories
                if wanted <= {t.casefold() for t in m.topics}
            ]
        return memories

    def list_missing_embeddings(
        self,
        model: Optional[str],
        limit: Optional[int] = None,
    ) -> list[tuple[str, str]]:
        """
        Memories with no embedding from ``model``, oldest first.

        Returns:
            List of (id, content) pairs
        """
        sql = """
            SELECT id, content FROM memories
            WHERE embedding_json IS NULL OR embedding_model IS NOT ?
            ORDER BY id
        """
        params: list = [model]
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [(row["id"], row["content"]) for row in rows]

    def count(self) -> int:
        """Count all memories."""
        with self._read() as conn:
            return conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]

    def stats(self) -> Stats:
        """Aggregate counts over the whole store. Read-only."""
        with self._read() as conn:
            total, projects, embedded = conn.execute("""
                SELECT
                    COUNT(*),
                    COUNT(DISTINCT CASE WHEN project <> '' THEN project END),
                    COUNT(embedding_json)
                FROM memories
            """).fetchone()
            by_type = {
                row[0]: row[1] for row in conn.execute(
                    "SELECT type, COUNT(*) FROM memories GROUP BY type ORDER BY type"
                )
            }
            by_scope = {
                row[0]: row[1] for row in conn.execute(
                    "SELECT scope, COUNT(*) FROM memories GROUP BY scope ORDER BY scope"
                )
            }
        return Stats(
            total_memories=total,
            project_count=projects,
            by_type=by_type,
            by_scope=by_scope,
            embedded_count=embedded,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _unit_interval(name: str, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}") from None
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got {value}")
    return value


def _validate_vector(vector: Sequence[float]) -> list[float]:
    try:
        values = [float(v) for v in vector]
    except (TypeError, ValueError):
        raise ValidationError("Embedding must be a sequence of numbers") from None
    if not values:
        raise ValidationError("Embedding must not be empty")
    if not all(math.isfinite(v) for v in values):
        raise ValidationError("Embedding contains non-finite values")
    return values


def _row_to_memory(row: sqlite3.Row) -> Memory:
    try:
        source = Source.from_dict(json.loads(row["source_json"]))
        topics = json.loads(row["topics_json"])
        embedding = json.loads(row["embedding_json"]) if row["embedding_json"] else None
        return Memory(
            id=row["id"],
            type=MemoryType.parse(row["type"]),
            content=row["content"],
            summary=row["summary"],
            scope=MemoryScope.parse(row["scope"]),
            project=row["project"],
            source=source,
            confidence=row["confidence"],
            importance=row["importance"],
            topics=topics,
            embedding=embedding,
            embedding_model=row["embedding_model"],
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
            access_count=row["access_count"],
        )
    except (ValueError, ValidationError) as e:
        raise InternalError(f"Corrupt memory record {row['id']}: {e}") from e
