from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from xerus.models.working_memory import utc_now


class ConversationRole(StrEnum):
    human = "human"
    ai = "ai"
    system = "system"


_ROLE_ALIASES: dict[str, ConversationRole] = {
    "human": ConversationRole.human,
    "user": ConversationRole.human,
    "ai": ConversationRole.ai,
    "assistant": ConversationRole.ai,
    "system": ConversationRole.system,
}


def normalize_role(role: str) -> ConversationRole:
    """Map caller role names (user/assistant/...) onto the three canonical roles."""
    try:
        return _ROLE_ALIASES[role.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown message role: {role}") from None


class ConversationMessage(BaseModel):
    role: ConversationRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)

    def render(self) -> str:
        return f"{self.role.value}: {self.content}"


class ConversationContext(BaseModel):
    messages: list[ConversationMessage] = Field(default_factory=list)
    context: str = ""
    source: str = "working_memory_only"


__all__ = [
    "ConversationContext",
    "ConversationMessage",
    "ConversationRole",
    "normalize_role",
]
