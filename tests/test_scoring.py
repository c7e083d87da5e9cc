"""Tests for relevance scoring, classification and sink eligibility."""

from __future__ import annotations

from datetime import timedelta

import pytest
from xerus.memory.scoring import (
    calculate_relevance,
    content_text,
    determine_context_type,
    estimate_tokens,
    is_attention_sink,
)
from xerus.models.working_memory import ContextType, ObservationContext, utc_now


def _ctx(**kwargs: object) -> ObservationContext:
    return ObservationContext(**kwargs)


class TestCalculateRelevance:
    def test_base_score(self) -> None:
        assert calculate_relevance("hello", _ctx(), {}) == 0.5

    def test_length_bonuses(self) -> None:
        assert calculate_relevance("a" * 101, _ctx(), {}) == 0.6
        assert calculate_relevance("a" * 501, _ctx(), {}) == 0.7

    def test_question_and_keyword(self) -> None:
        assert calculate_relevance("why?", _ctx(), {}) == 0.6
        assert calculate_relevance("Please EXPLAIN the diff", _ctx(), {}) == 0.7

    def test_keyword_counts_once(self) -> None:
        assert calculate_relevance("help, show me how to explain", _ctx(), {}) == 0.7

    def test_context_flags(self) -> None:
        assert calculate_relevance("x", _ctx(has_screenshot=True), {}) == 0.7
        assert calculate_relevance("x", _ctx(is_user_initiated=True), {}) == 0.6
        assert calculate_relevance("x", _ctx(session_start=True), {}) == 0.8

    def test_metadata_flags(self) -> None:
        assert calculate_relevance("x", _ctx(), {"is_important": True}) == 0.8
        assert calculate_relevance("x", _ctx(), {"user_rating": 0.9}) == 0.7
        assert calculate_relevance("x", _ctx(), {"user_rating": 0.7}) == 0.5
        assert calculate_relevance("x", _ctx(), {"follow_up": True}) == 0.6

    def test_camel_case_metadata_flags(self) -> None:
        assert calculate_relevance("x", _ctx(), {"isImportant": True}) == 0.8
        assert calculate_relevance("x", _ctx(), {"userRating": 0.9}) == 0.7
        assert calculate_relevance("x", _ctx(), {"followUp": True}) == 0.6
        assert is_attention_sink(0.3, "x", _ctx(), {"isAttentionSink": True}, threshold=0.8)
        assert determine_context_type("x", _ctx(), {"toolResult": True}) == ContextType.tool_result

    def test_recency_bonus_needs_recent_timestamp(self) -> None:
        now = utc_now()
        recent = _ctx(timestamp=now - timedelta(seconds=10))
        stale = _ctx(timestamp=now - timedelta(minutes=2))
        assert calculate_relevance("x", recent, {}, now=now) == 0.6
        assert calculate_relevance("x", stale, {}, now=now) == 0.5

    def test_score_is_clamped(self) -> None:
        score = calculate_relevance(
            "error? " + "a" * 600,
            _ctx(has_screenshot=True, is_user_initiated=True, session_start=True),
            {"is_important": True, "user_rating": 1.0, "follow_up": True},
        )
        assert score == 1.0

    @pytest.mark.parametrize(
        "content",
        ["", "plain", {"image": "b64"}, {"role": "user", "content": "help?"}, None, [1, 2, 3]],
    )
    def test_score_always_in_unit_interval(self, content: object) -> None:
        score = calculate_relevance(content, _ctx(has_screenshot=True), {"is_important": True})
        assert 0.0 <= score <= 1.0

    def test_deterministic(self) -> None:
        ctx = _ctx(is_user_initiated=True)
        assert calculate_relevance("help?", ctx, {}) == calculate_relevance("help?", ctx, {})

    def test_conversation_turn_scores_its_text(self) -> None:
        content = {"role": "user", "content": "How do I fix this error in my build?"}
        score = calculate_relevance(content, _ctx(is_user_initiated=True), {})
        assert score == pytest.approx(0.9)

    def test_screenshot_event(self) -> None:
        score = calculate_relevance("captured", _ctx(has_screenshot=True), {})
        assert score == pytest.approx(0.7)


class TestContentText:
    def test_string(self) -> None:
        assert content_text("abc") == "abc"

    def test_wrapped_text(self) -> None:
        assert content_text({"text": "abc"}) == "abc"

    def test_opaque_payload(self) -> None:
        assert content_text({"image": "b64"}) is None
        assert content_text(42) is None


class TestDetermineContextType:
    def test_screenshot_wins(self) -> None:
        ctx = _ctx(has_screenshot=True, has_audio=True)
        assert determine_context_type("x", ctx, {"tool_result": True}) == ContextType.screenshot

    def test_image_payload(self) -> None:
        assert determine_context_type({"image": "b64"}, _ctx(), {}) == ContextType.screenshot

    def test_audio(self) -> None:
        assert determine_context_type("x", _ctx(has_audio=True), {}) == ContextType.audio
        assert determine_context_type({"audio": "pcm"}, _ctx(), {}) == ContextType.audio

    def test_tool_result(self) -> None:
        assert determine_context_type("x", _ctx(), {"tool_result": True}) == ContextType.tool_result
        assert determine_context_type({"tool": "grep"}, _ctx(), {}) == ContextType.tool_result

    def test_default_text(self) -> None:
        assert determine_context_type({"role": "user"}, _ctx(), {}) == ContextType.text


class TestAttentionSink:
    def test_threshold(self) -> None:
        assert is_attention_sink(0.8, "x", _ctx(), {}, threshold=0.8)
        assert not is_attention_sink(0.79, "x", _ctx(), {}, threshold=0.8)

    def test_explicit_flag(self) -> None:
        assert is_attention_sink(0.3, "x", _ctx(), {"is_attention_sink": True}, threshold=0.8)

    def test_persistent_heuristics(self) -> None:
        assert is_attention_sink(0.5, "x", _ctx(session_start=True), {}, threshold=0.8)
        assert is_attention_sink(0.5, "Build ERROR here", _ctx(), {}, threshold=0.8)
        assert is_attention_sink(0.5, "x", _ctx(conversation_length=6), {}, threshold=0.8)
        assert not is_attention_sink(0.5, "x", _ctx(conversation_length=5), {}, threshold=0.8)

    def test_screenshot_event_is_not_a_sink(self) -> None:
        ctx = _ctx(has_screenshot=True)
        score = calculate_relevance("captured", ctx, {})
        assert not is_attention_sink(score, "captured", ctx, {}, threshold=0.8)


class TestEstimateTokens:
    def test_string(self) -> None:
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0

    def test_structured_content_uses_compact_json(self) -> None:
        # {"a":1} is seven characters
        assert estimate_tokens({"a": 1}) == 2
