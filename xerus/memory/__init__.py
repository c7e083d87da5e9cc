from __future__ import annotations

from xerus.memory.conversation import BufferWindowConversationMemory, NullConversationMemory
from xerus.memory.registry import WorkingMemoryRegistry, create_registry
from xerus.memory.sqlite_store import SQLiteWorkingMemoryStore
from xerus.memory.working import WorkingMemoryCache

__all__ = [
    "BufferWindowConversationMemory",
    "NullConversationMemory",
    "SQLiteWorkingMemoryStore",
    "WorkingMemoryCache",
    "WorkingMemoryRegistry",
    "create_registry",
]
