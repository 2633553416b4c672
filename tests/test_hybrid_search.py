"""
Tests for hybrid search: keyword scoring, cosine similarity, score fusion.
"""

import math

import pytest

from memorypilot.errors import InvalidQueryError
from memorypilot.search import (
    HybridSearchEngine,
    ScoredMemory,
    cosine_similarity,
    keyword_score,
    order_scored,
    query_terms,
    rank_hybrid,
    rank_keyword,
    semantic_score,
    tokenize,
)
from memorypilot.types import Memory, RecallFilters, RecallRequest


def _mem(id, content, *, topics=(), importance=1.0, created_at="2026-01-01T00:00:00.000000+00:00",
         embedding=None, model="mock:model"):
    return Memory(
        id=id,
        content=content,
        summary=content,
        topics=list(topics),
        importance=importance,
        created_at=created_at,
        embedding=embedding,
        embedding_model=model if embedding is not None else None,
    )


# ---------------------------------------------------------------------------
# Unit tests
# ---------------------------------------------------------------------------


class TestTokenize:

    def test_lowercases_and_dedupes(self):
        assert tokenize("Redis redis CACHE, cache!") == ["redis", "cache"]

    def test_query_terms_rejects_empty(self):
        with pytest.raises(InvalidQueryError):
            query_terms("")
        with pytest.raises(InvalidQueryError):
            query_terms(None)

    def test_query_terms_rejects_punctuation_only(self):
        with pytest.raises(InvalidQueryError):
            query_terms("?!...")


class TestKeywordScore:

    def test_no_overlap_scores_zero(self):
        assert keyword_score(["kafka"], _mem("a", "Use Redis")) == 0.0

    def test_term_frequency_is_sublinear(self):
        once = keyword_score(["redis"], _mem("a", "redis"))
        thrice = keyword_score(["redis"], _mem("b", "redis redis redis"))
        # content and summary both count
        assert once == pytest.approx(1 + math.log(2))
        assert thrice == pytest.approx(1 + math.log(6))
        assert once < thrice < 3 * once

    def test_topic_match_is_boosted(self):
        plain = keyword_score(["redis"], _mem("a", "notes", topics=["redis-cluster"]))
        exact = keyword_score(["redis"], _mem("b", "notes", topics=["redis"]))
        assert exact == pytest.approx(plain + 0.5)

    def test_matches_substrings(self):
        assert keyword_score(["cach"], _mem("a", "caching")) > 0


class TestCosine:

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_dimension_mismatch_is_none(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) is None

    def test_zero_vector_is_none(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) is None

    def test_semantic_score_normalized(self):
        m = _mem("a", "x", embedding=[-1.0, 0.0])
        assert semantic_score([1.0, 0.0], m) == pytest.approx(0.0)
        assert semantic_score([-1.0, 0.0], m) == pytest.approx(1.0)

    def test_missing_embedding_is_neutral(self):
        assert semantic_score([1.0, 0.0], _mem("a", "x")) == 0.0

    def test_other_model_is_neutral(self):
        m = _mem("a", "x", embedding=[1.0, 0.0], model="ollama:other")
        assert semantic_score([1.0, 0.0], m, model="mock:model") == 0.0
        assert semantic_score([1.0, 0.0], m) == pytest.approx(1.0)


class TestOrdering:

    def test_tie_break_importance_recency_id(self):
        scored = [
            ScoredMemory(_mem("c", "x", importance=0.5), 1.0),
            ScoredMemory(_mem("b", "x", created_at="2026-02-01T00:00:00.000000+00:00"), 1.0),
            ScoredMemory(_mem("z", "x"), 1.0),
            ScoredMemory(_mem("a", "x"), 1.0),
            ScoredMemory(_mem("top", "x", importance=0.1), 2.0),
        ]
        assert [s.memory.id for s in order_scored(scored)] == ["top", "b", "a", "z", "c"]

    def test_rank_keyword_drops_non_matches(self):
        memories = [_mem("a", "redis"), _mem("b", "postgres")]
        assert [s.memory.id for s in rank_keyword(["redis"], memories)] == ["a"]


class TestRankHybrid:

    def _rank(self, query_vector, memories, terms=("redis",), model="mock:model"):
        return rank_hybrid(
            list(terms), query_vector, memories,
            keyword_weight=0.4, semantic_weight=0.6, model=model,
        )

    def test_fused_score_formula(self):
        best = _mem("a", "redis redis", embedding=[1.0, 0.0])
        other = _mem("b", "redis", embedding=[0.0, 1.0])
        ranked = self._rank([1.0, 0.0], [best, other])
        assert [s.memory.id for s in ranked] == ["a", "b"]
        assert ranked[0].score == pytest.approx(0.4 * 1.0 + 0.6 * 1.0)
        k_other = (1 + math.log(2)) / (1 + math.log(4))
        assert ranked[1].score == pytest.approx(0.4 * k_other + 0.6 * 0.5)

    def test_semantic_only_candidate_included(self):
        lexical = _mem("a", "redis")
        semantic = _mem("b", "key value cache", embedding=[1.0, 0.0])
        ranked = self._rank([1.0, 0.0], [lexical, semantic])
        assert {s.memory.id for s in ranked} == {"a", "b"}
        # 0.6 * 1.0 beats 0.4 * 1.0
        assert ranked[0].memory.id == "b"

    def test_unrelated_without_embedding_dropped(self):
        assert self._rank([1.0, 0.0], [_mem("a", "postgres")]) == []

    def test_other_model_embedding_not_compared(self):
        m = _mem("a", "postgres", embedding=[1.0, 0.0], model="ollama:other")
        assert self._rank([1.0, 0.0], [m]) == []

    def test_higher_similarity_never_ranks_lower(self):
        """Raising one memory's cosine can only move it up."""
        for angle in (0.9, 0.5, 0.1, -0.5):
            near = _mem("near", "redis", embedding=[1.0, 0.0])
            far = _mem("far", "redis", embedding=[angle, math.sqrt(1 - angle * angle)])
            ranked = self._rank([1.0, 0.0], [far, near])
            assert ranked[0].memory.id == "near"

    def test_deterministic(self):
        memories = [
            _mem(f"m{i}", "redis cache", embedding=[1.0, float(i % 3)]) for i in range(10)
        ]
        first = [s.memory.id for s in self._rank([1.0, 1.0], memories)]
        second = [s.memory.id for s in self._rank([1.0, 1.0], list(reversed(memories)))]
        assert first == second


# ---------------------------------------------------------------------------
# Engine tests (against a real store)
# ---------------------------------------------------------------------------


class TestHybridSearchEngine:

    @pytest.fixture
    def engine(self, store):
        return HybridSearchEngine(store, embedding_model="mock:model")

    def _add(self, store, content, vector=None, model="mock:model", **kwargs):
        memory_id = store.create(Memory(content=content, **kwargs))
        if vector is not None:
            store.update_embedding(memory_id, vector, model)
        return memory_id

    def test_without_vector_equals_keyword_recall(self, store, engine):
        for i, content in enumerate(["redis cache", "redis redis", "postgres", "cache redis ttl"]):
            self._add(store, content, importance=0.1 * (i + 1))
        via_engine = [m.id for m in engine.search("redis cache")]
        via_store = [m.id for m in store.recall(RecallRequest(query="redis cache"))]
        assert via_engine == via_store

    def test_semantic_match_found_without_keyword(self, store, engine):
        target = self._add(store, "Use Memcached in front of the DB", vector=[1.0, 0.0, 0.0])
        self._add(store, "Deploy on Fridays is forbidden", vector=[0.0, 1.0, 0.0])
        results = engine.search("caching layer", query_vector=[0.9, 0.1, 0.0])
        assert results[0].id == target

    def test_other_dimension_ignored(self, store, engine):
        self._add(store, "unrelated text", vector=[1.0, 0.0])
        assert engine.search("caching", query_vector=[1.0, 0.0, 0.0]) == []

    def test_other_model_ignored(self, store, engine):
        self._add(store, "unrelated text", vector=[1.0, 0.0, 0.0], model="ollama:old")
        assert engine.search("caching", query_vector=[1.0, 0.0, 0.0]) == []

    def test_filters_apply_to_hybrid(self, store, engine):
        self._add(store, "redis decision", vector=[1.0, 0.0], type="decision")
        keep = self._add(store, "redis pattern", vector=[1.0, 0.0], type="pattern")
        results = engine.search(
            "redis", query_vector=[1.0, 0.0],
            filters=RecallFilters(types=["pattern"]),
        )
        assert [m.id for m in results] == [keep]

    def test_limit_and_access_recorded(self, store, engine):
        ids = [self._add(store, f"redis note {i}", vector=[1.0, float(i)]) for i in range(6)]
        results = engine.search("redis", query_vector=[1.0, 0.0], limit=2)
        assert len(results) == 2
        assert all(m.access_count == 1 for m in results)
        untouched = set(ids) - {m.id for m in results}
        assert all(store.peek(i).access_count == 0 for i in untouched)

    def test_search_scored_reports_components(self, store, engine):
        self._add(store, "redis", vector=[1.0, 0.0])
        [scored] = engine.search_scored(RecallRequest(query="redis"), [1.0, 0.0])
        assert scored.keyword == pytest.approx(1.0)
        assert scored.semantic == pytest.approx(1.0)
        assert scored.score == pytest.approx(1.0)
        assert scored.memory.access_count == 1
