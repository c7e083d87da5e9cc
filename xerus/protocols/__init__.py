from xerus.protocols.memory import ConversationMemory, WorkingMemoryStore
from xerus.protocols.scheduler import TaskScheduler

__all__ = ["ConversationMemory", "TaskScheduler", "WorkingMemoryStore"]
