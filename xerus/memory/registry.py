"""Per-(agent, user) working-memory instances sharing one store and scheduler."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from xerus.config import WorkingMemoryConfig, XerusSettings
from xerus.core.telemetry import shutdown_tracing
from xerus.memory.sqlite_store import SQLiteWorkingMemoryStore
from xerus.memory.working import WorkingMemoryCache
from xerus.models.working_memory import utc_now
from xerus.persistence.migrations import run_migrations
from xerus.protocols.memory import ConversationMemory, WorkingMemoryStore
from xerus.scheduler.ap_scheduler import XerusScheduler

logger = logging.getLogger(__name__)

ConversationFactory = Callable[[], ConversationMemory]


class WorkingMemoryRegistry:
    """Hands out one initialized ``WorkingMemoryCache`` per scope."""

    def __init__(
        self,
        store: WorkingMemoryStore,
        *,
        config: WorkingMemoryConfig | None = None,
        scheduler: XerusScheduler | None = None,
        conversation_factory: ConversationFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self.config = config or WorkingMemoryConfig()
        self._scheduler = scheduler if scheduler is not None else XerusScheduler()
        self._conversation_factory = conversation_factory
        self._clock = clock
        self._caches: dict[tuple[str, str], WorkingMemoryCache] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._caches)

    def __contains__(self, scope: tuple[str | int, str | int]) -> bool:
        agent_id, user_id = scope
        return (str(agent_id), str(user_id)) in self._caches

    async def get(self, agent_id: str | int, user_id: str | int) -> WorkingMemoryCache:
        """Return the cache for this pair, creating and initializing it on first use."""
        key = (str(agent_id), str(user_id))
        cache = self._caches.get(key)
        if cache is not None:
            return cache

        async with self._lock:
            cache = self._caches.get(key)
            if cache is not None:
                return cache

            conversation = self._conversation_factory() if self._conversation_factory else None
            cache = WorkingMemoryCache(
                key[0],
                key[1],
                self._store,
                config=self.config,
                scheduler=self._scheduler,
                conversation_memory=conversation,
                clock=self._clock,
            )
            await cache.initialize()
            self._caches[key] = cache
            logger.info("Working memory instance created: %s", cache.scope_id)
            return cache

    async def shutdown(self) -> None:
        """Shut every cache down, stop the shared scheduler and flush spans."""
        async with self._lock:
            for cache in self._caches.values():
                await cache.shutdown()
            self._caches.clear()
            self._scheduler.stop()
        shutdown_tracing()


async def create_registry(
    settings: XerusSettings,
    *,
    conversation_factory: ConversationFactory | None = None,
) -> WorkingMemoryRegistry:
    """Migrate the configured SQLite database and build a registry on top of it."""
    db_path = str(settings.db_path)
    await run_migrations(db_path)
    store = SQLiteWorkingMemoryStore(db_path, timeout=settings.working_memory.db_timeout_seconds)
    return WorkingMemoryRegistry(
        store,
        config=settings.working_memory,
        conversation_factory=conversation_factory,
    )


__all__ = ["WorkingMemoryRegistry", "create_registry"]
