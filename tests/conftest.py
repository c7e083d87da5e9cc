from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from xerus.config import WorkingMemoryConfig
from xerus.memory.sqlite_store import SQLiteWorkingMemoryStore
from xerus.memory.working import WorkingMemoryCache
from xerus.persistence.migrations import run_migrations

from tests.fakes import CacheFactory, FakeClock, InMemoryWorkingMemoryStore, RecordingScheduler


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def memory_store() -> InMemoryWorkingMemoryStore:
    return InMemoryWorkingMemoryStore()


@pytest.fixture
async def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "working_memory.db")
    await run_migrations(path)
    return path


@pytest.fixture
async def sqlite_store(db_path: str) -> SQLiteWorkingMemoryStore:
    return SQLiteWorkingMemoryStore(db_path)


@pytest.fixture
async def make_cache(
    sqlite_store: SQLiteWorkingMemoryStore,
    scheduler: RecordingScheduler,
    clock: FakeClock,
) -> AsyncIterator[CacheFactory]:
    """Build caches over the SQLite store; every cache is shut down afterwards."""
    created: list[WorkingMemoryCache] = []

    def _factory(
        agent_id: str = "1",
        user_id: str = "alice",
        *,
        store: Any = None,
        **config: Any,
    ) -> WorkingMemoryCache:
        cache = WorkingMemoryCache(
            agent_id,
            user_id,
            store if store is not None else sqlite_store,
            config=WorkingMemoryConfig(**config),
            scheduler=scheduler,
            clock=clock,
        )
        created.append(cache)
        return cache

    yield _factory

    for cache in created:
        await cache.shutdown()
