"""
Tests for the memory data model: summaries, closed enums, ids, limits.
"""

import pytest

from memorypilot.errors import ValidationError
from memorypilot.types import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    SUMMARY_MAX_LENGTH,
    MemoryScope,
    MemoryType,
    RecallRequest,
    SourceType,
    new_memory_id,
    normalize_topics,
    summarize_content,
)


class TestSummary:

    def test_short_content_copied_verbatim(self):
        assert summarize_content("Use Redis for caching") == "Use Redis for caching"

    def test_content_at_bound_copied_verbatim(self):
        content = "x" * SUMMARY_MAX_LENGTH
        assert summarize_content(content) == content

    def test_long_content_truncated_to_bound_with_ellipsis(self):
        content = "y" * (SUMMARY_MAX_LENGTH + 1)
        summary = summarize_content(content)
        assert len(summary) == SUMMARY_MAX_LENGTH
        assert summary.endswith("...")
        assert summary[:-3] == content[:SUMMARY_MAX_LENGTH - 3]

    def test_custom_bound(self):
        assert summarize_content("abcdefghij", max_length=6) == "abc..."


class TestClosedEnums:

    def test_parse_known_values(self):
        assert MemoryType.parse("decision") is MemoryType.DECISION
        assert MemoryType.parse(" Pattern ") is MemoryType.PATTERN
        assert MemoryScope.parse("project") is MemoryScope.PROJECT
        assert SourceType.parse(SourceType.GIT) is SourceType.GIT

    def test_parse_unknown_raises_validation_error(self):
        with pytest.raises(ValidationError, match="memory type"):
            MemoryType.parse("opinion")
        with pytest.raises(ValidationError, match="scope"):
            MemoryScope.parse("world")

    def test_parse_non_string_raises(self):
        with pytest.raises(ValidationError):
            MemoryType.parse(3)

    def test_memory_types_are_the_closed_set(self):
        assert {t.value for t in MemoryType} == {
            "decision", "pattern", "fact", "preference", "mistake", "learning",
        }


class TestIds:

    def test_ids_are_unique(self):
        ids = {new_memory_id() for _ in range(200)}
        assert len(ids) == 200

    def test_ids_sort_by_creation(self):
        ids = [new_memory_id() for _ in range(50)]
        # ULIDs generated in one millisecond share a prefix; compare across time
        assert ids[0][:10] <= ids[-1][:10]
        assert len(ids[0]) == 26


class TestTopics:

    def test_normalize_keeps_order_and_drops_duplicates(self):
        assert normalize_topics(["redis", " cache ", "Redis", "", "db"]) == ["redis", "cache", "db"]

    def test_normalize_none(self):
        assert normalize_topics(None) == []

    def test_non_string_topic_rejected(self):
        with pytest.raises(ValidationError):
            normalize_topics(["ok", 5])


class TestRecallRequestLimit:

    @pytest.mark.parametrize("limit", [0, -3])
    def test_non_positive_limit_uses_default(self, limit):
        assert RecallRequest(query="q", limit=limit).effective_limit == DEFAULT_LIMIT

    def test_limit_is_capped(self):
        assert RecallRequest(query="q", limit=10_000).effective_limit == MAX_LIMIT

    def test_positive_limit_kept(self):
        assert RecallRequest(query="q", limit=3).effective_limit == 3
