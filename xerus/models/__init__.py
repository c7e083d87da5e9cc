from __future__ import annotations

from xerus.models.conversation import (
    ConversationContext,
    ConversationMessage,
    ConversationRole,
    normalize_role,
)
from xerus.models.working_memory import (
    DEFAULT_SESSION_ID,
    ContextEntry,
    ContextType,
    ObservationContext,
    RetrieveOptions,
    SlidingWindowEntry,
    StoreFlags,
    StoreResult,
    SyncResult,
    WorkingMemoryStats,
    utc_now,
)

__all__ = [
    "DEFAULT_SESSION_ID",
    "ContextEntry",
    "ContextType",
    "ConversationContext",
    "ConversationMessage",
    "ConversationRole",
    "ObservationContext",
    "RetrieveOptions",
    "SlidingWindowEntry",
    "StoreFlags",
    "StoreResult",
    "SyncResult",
    "WorkingMemoryStats",
    "normalize_role",
    "utc_now",
]
