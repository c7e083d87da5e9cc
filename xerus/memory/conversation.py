"""Conversation memory capabilities injected into the working-memory cache."""

from __future__ import annotations

import logging
from collections import deque

from xerus.models.conversation import ConversationMessage, normalize_role

logger = logging.getLogger(__name__)


class NullConversationMemory:
    """Default capability: reports itself unavailable and keeps nothing."""

    async def initialize(self) -> bool:
        return False

    async def add_message(self, role: str, content: str) -> None:
        del role, content

    async def load_context(self) -> list[ConversationMessage]:
        return []


class BufferWindowConversationMemory:
    """Keeps the last ``k`` exchanges (``2 * k`` messages) of the conversation."""

    def __init__(self, k: int = 10) -> None:
        if k <= 0:
            raise ValueError("k must be > 0")
        self.k = k
        self._messages: deque[ConversationMessage] = deque(maxlen=2 * k)

    async def initialize(self) -> bool:
        logger.info("Conversation buffer window initialized (window: %d)", self.k)
        return True

    async def add_message(self, role: str, content: str) -> None:
        self._messages.append(ConversationMessage(role=normalize_role(role), content=content))

    async def load_context(self) -> list[ConversationMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


__all__ = ["BufferWindowConversationMemory", "NullConversationMemory"]
