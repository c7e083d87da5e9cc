from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from xerus.models.conversation import ConversationMessage
from xerus.models.working_memory import ContextEntry, ContextType


@runtime_checkable
class WorkingMemoryStore(Protocol):
    async def insert(self, entry: ContextEntry) -> str: ...

    async def list_active(
        self, agent_id: str, user_id: str, now: datetime
    ) -> list[ContextEntry]: ...

    async def query(
        self,
        agent_id: str,
        user_id: str,
        now: datetime,
        *,
        limit: int,
        min_relevance: float = 0.0,
        session_id: str | None = None,
        context_types: list[ContextType] | None = None,
        include_attention_sinks: bool = True,
    ) -> list[ContextEntry]: ...

    async def list_attention_sinks(
        self, agent_id: str, user_id: str, now: datetime
    ) -> list[ContextEntry]: ...

    async def count_window(self, agent_id: str, user_id: str, now: datetime) -> int: ...

    async def evict_least_relevant(
        self, agent_id: str, user_id: str, now: datetime, count: int
    ) -> list[str]: ...

    async def delete_expired(self, agent_id: str, user_id: str, now: datetime) -> int: ...


@runtime_checkable
class ConversationMemory(Protocol):
    async def initialize(self) -> bool: ...

    async def add_message(self, role: str, content: str) -> None: ...

    async def load_context(self) -> list[ConversationMessage]: ...


__all__ = ["ConversationMemory", "WorkingMemoryStore"]
