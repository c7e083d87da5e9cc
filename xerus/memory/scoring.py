"""Admission heuristics for the working-memory cache.

Relevance scoring, context-type classification, attention-sink eligibility
and token estimation. Everything here is a pure function of its inputs (plus
``now`` for the recency bonus) so the cache can score before touching storage.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from xerus.models.working_memory import ContextType, ObservationContext, StoreFlags, utc_now

BASE_RELEVANCE = 0.5
IMPORTANT_KEYWORDS: tuple[str, ...] = ("error", "help", "how to", "explain", "show me")
RECENT_WINDOW_SECONDS = 60.0
CHARS_PER_TOKEN = 4

_TEXT_KEYS = ("content", "text")


def content_text(content: Any) -> str | None:
    """Return the text the string heuristics look at, or ``None``.

    Strings are used as-is; conversational turns and wrapped text
    (``{"role": ..., "content": ...}``, ``{"text": ...}``) use their string body.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        for key in _TEXT_KEYS:
            value = content.get(key)
            if isinstance(value, str):
                return value
    return None


def calculate_relevance(
    content: Any,
    context: ObservationContext,
    metadata: StoreFlags | Mapping[str, Any] | None,
    *,
    now: datetime | None = None,
) -> float:
    relevance = BASE_RELEVANCE

    text = content_text(content)
    if text is not None:
        if len(text) > 100:
            relevance += 0.1
        if len(text) > 500:
            relevance += 0.1
        if "?" in text:
            relevance += 0.1
        lowered = text.lower()
        if any(keyword in lowered for keyword in IMPORTANT_KEYWORDS):
            relevance += 0.2

    if context.has_screenshot:
        relevance += 0.2
    if context.is_user_initiated:
        relevance += 0.1
    if context.session_start:
        relevance += 0.3

    flags = StoreFlags.from_metadata(metadata)
    if flags.is_important:
        relevance += 0.3
    if flags.user_rating is not None and flags.user_rating > 0.7:
        relevance += 0.2
    if flags.follow_up:
        relevance += 0.1

    if context.timestamp is not None:
        age = ((now or utc_now()) - context.timestamp).total_seconds()
        if age < RECENT_WINDOW_SECONDS:
            relevance += 0.1

    return round(max(0.0, min(1.0, relevance)), 2)


def determine_context_type(
    content: Any,
    context: ObservationContext,
    metadata: StoreFlags | Mapping[str, Any] | None,
) -> ContextType:
    is_mapping = isinstance(content, Mapping)
    if context.has_screenshot or (is_mapping and content.get("image")):
        return ContextType.screenshot
    if context.has_audio or (is_mapping and content.get("audio")):
        return ContextType.audio
    if StoreFlags.from_metadata(metadata).tool_result or (is_mapping and content.get("tool")):
        return ContextType.tool_result
    return ContextType.text


def is_persistent_context(content: Any, context: ObservationContext) -> bool:
    if context.session_start:
        return True
    text = content_text(content)
    if text is not None and "error" in text.lower():
        return True
    return context.conversation_length is not None and context.conversation_length > 5


def is_attention_sink(
    relevance_score: float,
    content: Any,
    context: ObservationContext,
    metadata: StoreFlags | Mapping[str, Any] | None,
    *,
    threshold: float,
) -> bool:
    return (
        relevance_score >= threshold
        or StoreFlags.from_metadata(metadata).is_attention_sink
        or is_persistent_context(content, context)
    )


def estimate_tokens(content: Any) -> int:
    """Roughly four characters per token over the string or compact JSON form."""
    if isinstance(content, str):
        text = content
    elif content is None:
        text = ""
    else:
        text = json.dumps(content, separators=(",", ":"), default=str)
    return math.ceil(len(text) / CHARS_PER_TOKEN)


__all__ = [
    "BASE_RELEVANCE",
    "IMPORTANT_KEYWORDS",
    "calculate_relevance",
    "content_text",
    "determine_context_type",
    "estimate_tokens",
    "is_attention_sink",
    "is_persistent_context",
]
