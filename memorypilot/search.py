"""
Hybrid search: keyword relevance fused with embedding similarity.

Scoring, for a query and a candidate set:

    keyword   raw = sum over query terms t with tf(t) > 0 of (1 + ln tf(t))
                    + TOPIC_BOOST for every term equal to one of the topics
              k   = raw / max(raw over candidates)            (0 if max is 0)
    semantic  s   = (cosine(query_vector, embedding) + 1) / 2
                    0 when the memory has no embedding from the active model
    fused         = keyword_weight * k + semantic_weight * s

``tf(t)`` is the number of occurrences of ``t`` in the lowercased
content, summary and topics. Semantic normalization does not depend on
the other candidates, so raising one memory's similarity can only move
it up. Equal scores are ordered by importance (desc), created_at
(desc), id (asc), which makes every ranking a total order.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

from .errors import InvalidQueryError
from .types import Memory, RecallFilters, RecallRequest

if TYPE_CHECKING:
    from .memory_store import MemoryStore

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")

TOPIC_BOOST = 0.5

# Fused scores are rounded so float noise can't break ties differently
SCORE_PRECISION = 9


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens, de-duplicated, in first-seen order."""
    seen: dict[str, None] = {}
    for token in _TOKEN_RE.findall(text.lower()):
        seen.setdefault(token, None)
    return list(seen)


def query_terms(query: Optional[str]) -> list[str]:
    """Tokenize a search query, rejecting queries with nothing to match."""
    if not query or not query.strip():
        raise InvalidQueryError("Query must not be empty")
    terms = tokenize(query)
    if not terms:
        raise InvalidQueryError(f"Query has no searchable words: {query!r}")
    return terms


def memory_haystack(content: str, summary: str, topics: Sequence[str]) -> str:
    """The lowercased text keyword scoring runs against."""
    return "\n".join([content, summary, " ".join(topics)]).lower()


def keyword_score(terms: Sequence[str], memory: Memory) -> float:
    """Raw (unnormalized) keyword relevance of a memory for the query terms."""
    haystack = memory_haystack(memory.content, memory.summary, memory.topics)
    topics = {t.lower() for t in memory.topics}
    score = 0.0
    for term in terms:
        tf = haystack.count(term)
        if tf > 0:
            score += 1.0 + math.log(tf)
        if term in topics:
            score += TOPIC_BOOST
    return score


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """Cosine similarity in [-1, 1]; None if the vectors can't be compared."""
    if len(a) != len(b) or not a:
        return None
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return None
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def _memory_cosine(
    query_vector: Sequence[float],
    memory: Memory,
    model: Optional[str],
) -> Optional[float]:
    if memory.embedding is None:
        return None
    if model is not None and memory.embedding_model != model:
        return None
    return cosine_similarity(query_vector, memory.embedding)


def semantic_score(
    query_vector: Sequence[float],
    memory: Memory,
    model: Optional[str] = None,
) -> float:
    """
    Normalized semantic similarity in [0, 1].

    Memories without an embedding, or embedded by a different model than
    ``model`` (when given), get the neutral minimum of 0.0.
    """
    cos = _memory_cosine(query_vector, memory, model)
    if cos is None:
        return 0.0
    return (cos + 1.0) / 2.0


@dataclass
class ScoredMemory:
    """A candidate with its component and final scores."""
    memory: Memory
    score: float
    keyword: float = 0.0
    semantic: float = 0.0


def order_scored(scored: list[ScoredMemory]) -> list[ScoredMemory]:
    """Sort by score desc, importance desc, created_at desc, id asc."""
    by_id = sorted(scored, key=lambda s: s.memory.id)
    return sorted(
        by_id,
        key=lambda s: (s.score, s.memory.importance, s.memory.created_at),
        reverse=True,
    )


def rank_keyword(terms: Sequence[str], memories: Sequence[Memory]) -> list[ScoredMemory]:
    """Keyword-only ranking. Memories with no lexical overlap are dropped."""
    scored = []
    for memory in memories:
        raw = keyword_score(terms, memory)
        if raw > 0:
            scored.append(ScoredMemory(memory, round(raw, SCORE_PRECISION), keyword=raw))
    return order_scored(scored)


def rank_hybrid(
    terms: Sequence[str],
    query_vector: Sequence[float],
    memories: Sequence[Memory],
    *,
    keyword_weight: float,
    semantic_weight: float,
    model: Optional[str] = None,
) -> list[ScoredMemory]:
    """
    Fuse keyword and semantic scores over a candidate set.

    A memory qualifies if it matches lexically or carries a comparable
    embedding; one without either can't be ranked meaningfully.
    """
    raw = [keyword_score(terms, m) for m in memories]
    max_raw = max(raw, default=0.0)

    scored = []
    for memory, kw_raw in zip(memories, raw):
        cos = _memory_cosine(query_vector, memory, model)
        if kw_raw <= 0 and cos is None:
            continue
        k = kw_raw / max_raw if max_raw > 0 else 0.0
        s = (cos + 1.0) / 2.0 if cos is not None else 0.0
        fused = keyword_weight * k + semantic_weight * s
        scored.append(ScoredMemory(memory, round(fused, SCORE_PRECISION), keyword=k, semantic=s))
    return order_scored(scored)


class HybridSearchEngine:
    """
    Ranks stored memories against a query using keyword and vector signals.

    Reads candidates from the MemoryStore and asks it to record the
    access on every returned memory; it never writes anything else.
    """

    def __init__(
        self,
        store: "MemoryStore",
        *,
        keyword_weight: float = 0.4,
        semantic_weight: float = 0.6,
        embedding_model: Optional[str] = None,
    ):
        """
        Args:
            store: Memory store to search
            keyword_weight: Weight of the normalized keyword score
            semantic_weight: Weight of the normalized semantic score
            embedding_model: Identity of the model that produced query
                vectors; stored embeddings from other models are ignored
        """
        self._store = store
        self.keyword_weight = keyword_weight
        self.semantic_weight = semantic_weight
        self.embedding_model = embedding_model

    def search(
        self,
        query: str,
        query_vector: Optional[Sequence[float]] = None,
        limit: Optional[int] = None,
        filters: Optional[RecallFilters] = None,
    ) -> list[Memory]:
        """
        Rank memories for a query, most relevant first.

        Without a query vector this is exactly the store's keyword recall.

        Raises:
            InvalidQueryError: If the query is empty or has no words
        """
        request = RecallRequest(
            query=query,
            limit=limit if limit is not None else 0,
            filters=filters or RecallFilters(),
        )
        if not query_vector:
            logger.debug("No query vector, keyword-only search for %r", query)
            return self._store.recall(request)

        return [s.memory for s in self.search_scored(request, query_vector)]

    def search_scored(
        self,
        request: RecallRequest,
        query_vector: Sequence[float],
    ) -> list[ScoredMemory]:
        """Hybrid ranking with scores, truncated to the limit; records access."""
        terms = query_terms(request.query)
        candidates = self._store.select_candidates(
            terms,
            request.filters,
            embedding_model=self.embedding_model,
            embedding_dim=len(query_vector),
        )
        ranked = rank_hybrid(
            terms,
            query_vector,
            candidates,
            keyword_weight=self.keyword_weight,
            semantic_weight=self.semantic_weight,
            model=self.embedding_model,
        )[:request.effective_limit]

        touched = {m.id: m for m in self._store.touch([s.memory.id for s in ranked])}
        result = []
        for s in ranked:
            if s.memory.id in touched:
                s.memory = touched[s.memory.id]
                result.append(s)
        logger.debug("Hybrid search %r: %d candidates, %d returned",
                     request.query, len(candidates), len(result))
        return result
