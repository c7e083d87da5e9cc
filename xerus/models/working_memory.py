from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_SESSION_ID = "default"


def utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return value
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value


class ContextType(StrEnum):
    screenshot = "screenshot"
    audio = "audio"
    tool_result = "tool_result"
    text = "text"


class ContextEntry(BaseModel):
    id: str
    agent_id: str
    user_id: str
    session_id: str = DEFAULT_SESSION_ID
    content: Any
    context_type: ContextType = ContextType.text
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    attention_sink: bool = False
    token_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "expires_at")
    @classmethod
    def _ensure_timezone_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("datetime fields must be timezone-aware")
        return value

    @model_validator(mode="after")
    def _expiry_after_creation(self) -> ContextEntry:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class ObservationContext(BaseModel):
    """Caller-supplied flags describing where an observation came from.

    Keys may arrive in snake_case from Python callers or camelCase from the
    renderer-side buffer; unknown keys are kept.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    session_id: str | None = None
    timestamp: datetime | None = None
    has_screenshot: bool = False
    has_audio: bool = False
    is_user_initiated: bool = False
    session_start: bool = False
    conversation_length: int | None = None
    source: str | None = None
    conversation_message: bool = False

    @field_validator("timestamp")
    @classmethod
    def _default_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class StoreFlags(BaseModel):
    """Metadata flags the cache reads; the metadata bag itself is stored untouched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    force_store: bool = False
    is_important: bool = False
    user_rating: float | None = None
    follow_up: bool = False
    is_attention_sink: bool = False
    tool_result: Any = None

    @classmethod
    def from_metadata(cls, metadata: StoreFlags | Mapping[str, Any] | None) -> StoreFlags:
        if isinstance(metadata, StoreFlags):
            return metadata
        return cls.model_validate(dict(metadata or {}))


class RetrieveOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    limit: int = Field(default=10, ge=1)
    include_attention_sinks: bool = True
    min_relevance: float = Field(default=0.1, ge=0.0, le=1.0)
    context_types: list[ContextType] | None = None
    session_only: bool = False


class StoreResult(BaseModel):
    stored: bool
    id: str | None = None
    relevance_score: float | None = None
    is_attention_sink: bool = False
    reason: str | None = None
    error: str | None = None
    response_time_ms: float = 0.0


class SlidingWindowEntry(BaseModel):
    """One snapshot row pushed from the renderer's short-term context buffer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    content: Any
    session_id: str | None = None
    timestamp: datetime | None = None
    is_important: bool = False
    relevance: float | None = None
    index: int | None = None

    @field_validator("timestamp")
    @classmethod
    def _default_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def marks_attention_sink(self) -> bool:
        return self.is_important or (self.relevance is not None and self.relevance > 0.8)


class SyncResult(BaseModel):
    synced: int = 0
    errors: int = 0


class WorkingMemoryStats(BaseModel):
    initialized: bool
    agent_id: str
    user_id: str
    total_items: int = 0
    attention_sink_count: int = 0
    average_relevance: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_hit_rate: float = 0.0
    stored_count: int = 0
    rejected_count: int = 0
    evicted_count: int = 0
    expired_count: int = 0
    retrieval_failures: int = 0
    conversation_enabled: bool = False
    config: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "DEFAULT_SESSION_ID",
    "ContextEntry",
    "ContextType",
    "ObservationContext",
    "RetrieveOptions",
    "SlidingWindowEntry",
    "StoreFlags",
    "StoreResult",
    "SyncResult",
    "WorkingMemoryStats",
    "utc_now",
]
