"""
Unit tests for ChunkTextExtractor.

Tests cover:
- Each extraction strategy on its own chunk shape
- Strategy order and first-match-wins
- Blank results falling through to later strategies
- Breadth-first deep search and its depth limit
- Unknown shapes and non-container chunks
"""

from unittest.mock import Mock

import pytest

from app.services.chunk_extractor import (
    ChunkTextExtractor,
    deep_search,
    extract_text,
)


class TestStrategies:
    """Each known chunk shape is recognised"""

    def test_openai_delta(self):
        chunk = {"choices": [{"delta": {"content": "Hello"}}]}
        assert extract_text(chunk) == "Hello"

    def test_openai_full_message(self):
        chunk = {"choices": [{"message": {"role": "assistant", "content": "Full"}}]}
        assert extract_text(chunk) == "Full"

    def test_candidate_parts_joined(self):
        chunk = {
            "candidates": [
                {"content": {"parts": [{"text": "Hel"}, {"text": "lo"}], "role": "model"}}
            ]
        }
        assert extract_text(chunk) == "Hello"

    def test_candidate_parts_accept_plain_strings(self):
        chunk = {"candidates": [{"content": {"parts": ["a", {"text": "b"}]}}]}
        assert extract_text(chunk) == "ab"

    def test_candidate_parts_skip_blank_parts(self):
        chunk = {"candidates": [{"content": {"parts": [{"text": "  "}, {"text": "x"}, {}]}}]}
        assert extract_text(chunk) == "x"

    def test_message_content_parts(self):
        chunk = {"message": {"content": {"parts": ["Part one", " and two"]}}}
        assert extract_text(chunk) == "Part one and two"

    def test_direct_text(self):
        assert extract_text({"text": "plain"}) == "plain"

    def test_direct_content(self):
        assert extract_text({"content": "plain content"}) == "plain content"

    def test_leading_whitespace_preserved(self):
        chunk = {"choices": [{"delta": {"content": " world"}}]}
        assert extract_text(chunk) == " world"


class TestOrdering:
    """First non-blank strategy wins"""

    def test_delta_preferred_over_direct_text(self):
        chunk = {"choices": [{"delta": {"content": "delta"}}], "text": "direct"}
        assert extract_text(chunk) == "delta"

    def test_blank_delta_falls_through(self):
        chunk = {"choices": [{"delta": {"content": "   "}}], "text": "fallback"}
        assert extract_text(chunk) == "fallback"

    def test_null_delta_falls_through_to_message(self):
        chunk = {"choices": [{"delta": {"content": None}, "message": {"content": "msg"}}]}
        assert extract_text(chunk) == "msg"

    def test_later_strategies_not_called_after_match(self):
        """Test a strategy after the match is never invoked"""
        later = Mock(side_effect=AssertionError("should not be called"))
        extractor = ChunkTextExtractor(
            strategies=[("first", lambda chunk: "found"), ("later", later)]
        )

        assert extractor.extract({"anything": True}) == "found"
        later.assert_not_called()

    def test_custom_strategies_tried_in_order(self):
        calls = []

        def first(chunk):
            calls.append("first")
            return ""

        def second(chunk):
            calls.append("second")
            return "second wins"

        extractor = ChunkTextExtractor(strategies=[("first", first), ("second", second)])

        assert extractor.extract({}) == "second wins"
        assert calls == ["first", "second"]


class TestDeepSearch:
    """Breadth-first fallback search"""

    def test_finds_nested_text(self):
        chunk = {"data": {"payload": {"text": "deep"}}}
        assert extract_text(chunk) == "deep"

    def test_shallower_match_wins(self):
        chunk = {
            "a": {"b": {"text": "level two"}},
            "c": {"content": "level one"},
        }
        assert deep_search(chunk) == "level one"

    def test_insertion_order_within_level(self):
        chunk = {"first": {"content": "one"}, "second": {"text": "two"}}
        assert deep_search(chunk) == "one"

    def test_lists_count_as_a_level(self):
        chunk = {"items": [{"text": "in list"}]}
        assert deep_search(chunk) == "in list"

    def test_depth_limit(self):
        """Test levels 0-3 are searched and level 4 is not"""
        at_level_three = {"a": {"b": {"c": {"text": "found"}}}}
        at_level_four = {"a": {"b": {"c": {"d": {"text": "too deep"}}}}}

        assert deep_search(at_level_three) == "found"
        assert deep_search(at_level_four) is None
        assert extract_text(at_level_four) == ""

    def test_blank_values_skipped(self):
        chunk = {"x": {"text": ""}, "y": {"z": {"content": "real"}}}
        assert deep_search(chunk) == "real"

    def test_non_string_values_ignored(self):
        chunk = {"meta": {"text": 42, "content": {"text": "nested"}}}
        assert deep_search(chunk) == "nested"


class TestUnknownShapes:
    """Chunks without text produce an empty string"""

    @pytest.mark.parametrize(
        "chunk",
        [
            {},
            [],
            {"choices": []},
            {"usage": {"prompt_tokens": 10, "completion_tokens": 3}},
            {"candidates": [{"finishReason": "STOP"}]},
            None,
            "a bare string",
            42,
            True,
        ],
    )
    def test_returns_empty_string(self, chunk):
        assert extract_text(chunk) == ""

    def test_top_level_list(self):
        assert extract_text([{"text": "from list"}]) == "from list"
