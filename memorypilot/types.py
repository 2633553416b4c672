"""
Data types for memorypilot.

A Memory is the unit of recall: a short text record with type/topic
metadata, provenance, ranking weights and an optional embedding.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ulid import ULID

from .errors import ValidationError


# Summaries are a bounded prefix of the content
SUMMARY_MAX_LENGTH = 100
ELLIPSIS = "..."

DEFAULT_LIMIT = 5
MAX_LIMIT = 100


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.ffffff+00:00.

    Microsecond precision keeps string order equal to time order,
    which the ranking tie-break relies on.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_memory_id() -> str:
    """Allocate a fresh time-ordered id (ULID, 26 chars)."""
    return str(ULID())


def summarize_content(content: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """Derive the summary: content verbatim if short, else truncated with '...'.

    Truncated summaries are exactly ``max_length`` characters long.
    """
    if len(content) <= max_length:
        return content
    return content[:max_length - len(ELLIPSIS)] + ELLIPSIS


class _ClosedEnum(str, Enum):
    """String enum that rejects unknown variants with ValidationError."""

    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        allowed = ", ".join(v.value for v in cls)
        label = _ENUM_LABELS.get(cls.__name__, cls.__name__)
        raise ValidationError(
            f"Invalid {label}: {value!r} (expected one of: {allowed})"
        )

    def __str__(self) -> str:
        return self.value


class MemoryType(_ClosedEnum):
    DECISION = "decision"
    PATTERN = "pattern"
    FACT = "fact"
    PREFERENCE = "preference"
    MISTAKE = "mistake"
    LEARNING = "learning"


class SourceType(_ClosedEnum):
    MANUAL = "manual"
    OBSERVED = "observed"
    GIT = "git"
    FILE = "file"
    TERMINAL = "terminal"
    IMPORT = "import"


class MemoryScope(_ClosedEnum):
    PERSONAL = "personal"
    PROJECT = "project"
    TEAM = "team"


_ENUM_LABELS = {
    "MemoryType": "memory type",
    "SourceType": "source type",
    "MemoryScope": "scope",
}


@dataclass(frozen=True)
class Source:
    """Where a memory came from. Immutable once recorded."""
    type: SourceType = SourceType.MANUAL
    reference: str = ""
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type.value,
            "reference": self.reference,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        return cls(
            type=SourceType.parse(data.get("type", SourceType.MANUAL)),
            reference=data.get("reference", ""),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class Memory:
    """
    A single persisted memory record.

    ``id``, ``summary`` and ``created_at`` are assigned by the store on
    create; callers building a new Memory leave them empty.

    Attributes:
        id: Time-ordered unique identifier (ULID)
        type: Semantic category
        content: Full text body
        summary: Bounded prefix of content, derived at creation
        scope: Visibility class
        source: Provenance
        confidence: Trust in the content, 0..1
        importance: Ranking weight, 0..1 (also the first tie-break)
        topics: Ordered, de-duplicated tags
        project: Optional project the memory belongs to
        embedding: Vector from ``embedding_model``, or None
        embedding_model: Identity of the model that produced ``embedding``
        created_at: Creation timestamp (UTC ISO)
        last_accessed_at: Timestamp of the most recent recall
        access_count: Number of recalls
    """
    content: str
    type: MemoryType = MemoryType.FACT
    id: str = ""
    summary: str = ""
    scope: MemoryScope = MemoryScope.PERSONAL
    source: Source = field(default_factory=Source)
    confidence: float = 1.0
    importance: float = 1.0
    topics: list[str] = field(default_factory=list)
    project: Optional[str] = None
    embedding: Optional[list[float]] = None
    embedding_model: Optional[str] = None
    created_at: str = ""
    last_accessed_at: str = ""
    access_count: int = 0

    def to_dict(self, *, include_embedding: bool = False) -> dict[str, Any]:
        """JSON-friendly view, used for tool output and ``--json``."""
        d: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "summary": self.summary,
            "scope": self.scope.value,
            "source": self.source.to_dict(),
            "confidence": self.confidence,
            "importance": self.importance,
            "topics": list(self.topics),
            "project": self.project,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
            "has_embedding": self.embedding is not None,
        }
        if include_embedding:
            d["embedding"] = self.embedding
            d["embedding_model"] = self.embedding_model
        return d


def normalize_topics(topics: Optional[list[str]]) -> list[str]:
    """Strip blanks and duplicates (case-insensitive), keeping first-seen order."""
    result: list[str] = []
    seen: set[str] = set()
    for topic in topics or []:
        if not isinstance(topic, str):
            raise ValidationError(f"Topic must be a string: {topic!r}")
        topic = topic.strip()
        key = topic.casefold()
        if not topic or key in seen:
            continue
        seen.add(key)
        result.append(topic)
    return result


@dataclass
class RecallFilters:
    """Optional constraints applied before ranking. Empty means no constraint."""
    types: list[MemoryType] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    scope: Optional[MemoryScope] = None
    project: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.types or self.topics or self.scope or self.project)


@dataclass
class RecallRequest:
    """A single recall call. Constructed per call, never persisted."""
    query: str
    limit: int = DEFAULT_LIMIT
    filters: RecallFilters = field(default_factory=RecallFilters)

    @property
    def effective_limit(self) -> int:
        """Non-positive limits fall back to the default; large ones are capped."""
        if not isinstance(self.limit, int) or self.limit <= 0:
            return DEFAULT_LIMIT
        return min(self.limit, MAX_LIMIT)


@dataclass
class Stats:
    """Aggregate view of the store, computed on demand."""
    total_memories: int = 0
    project_count: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_scope: dict[str, int] = field(default_factory=dict)
    embedded_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_memories": self.total_memories,
            "project_count": self.project_count,
            "by_type": dict(self.by_type),
            "by_scope": dict(self.by_scope),
            "embedded_count": self.embedded_count,
        }
