"""Tests for XerusScheduler: APScheduler wrapper."""

from __future__ import annotations

import pytest
from xerus.scheduler.ap_scheduler import XerusScheduler

from tests.helpers import wait_until


async def noop() -> None:
    pass


@pytest.fixture
def xerus_scheduler() -> XerusScheduler:
    return XerusScheduler()


class TestSchedulerLifecycle:
    def test_initial_state(self, xerus_scheduler: XerusScheduler) -> None:
        assert not xerus_scheduler.running
        assert xerus_scheduler.job_ids == []

    @pytest.mark.asyncio
    async def test_start_stop(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.start()
        assert xerus_scheduler.running
        xerus_scheduler.stop()
        assert not xerus_scheduler.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.start()
        xerus_scheduler.start()
        assert xerus_scheduler.running
        xerus_scheduler.stop()

    def test_stop_is_idempotent(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.stop()
        assert not xerus_scheduler.running

    @pytest.mark.asyncio
    async def test_stop_clears_jobs(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.add_heartbeat("sweep", 60, noop)
        xerus_scheduler.start()
        xerus_scheduler.stop()
        assert xerus_scheduler.job_ids == []


class TestHeartbeat:
    def test_add_heartbeat(self, xerus_scheduler: XerusScheduler) -> None:
        sid = xerus_scheduler.add_heartbeat("working_memory_sweep:1:alice", 300, noop)
        assert sid == "heartbeat:working_memory_sweep:1:alice"
        assert sid in xerus_scheduler.job_ids

    def test_duplicate_heartbeat_raises(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.add_heartbeat("hb1", 30, noop)
        with pytest.raises(ValueError, match="already registered"):
            xerus_scheduler.add_heartbeat("hb1", 60, noop)

    @pytest.mark.parametrize("interval", [0, -10])
    def test_non_positive_interval_raises(
        self, xerus_scheduler: XerusScheduler, interval: float
    ) -> None:
        with pytest.raises(ValueError, match="must be > 0"):
            xerus_scheduler.add_heartbeat("hb1", interval, noop)


class TestRemoveSchedule:
    def test_remove_existing(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.add_heartbeat("hb1", 30, noop)
        xerus_scheduler.remove_schedule("heartbeat:hb1")
        assert "heartbeat:hb1" not in xerus_scheduler.job_ids

    def test_remove_unknown_raises(self, xerus_scheduler: XerusScheduler) -> None:
        with pytest.raises(KeyError, match="unknown schedule"):
            xerus_scheduler.remove_schedule("nonexistent")


class TestCallbackExecution:
    @pytest.mark.asyncio
    async def test_heartbeat_fires(self, xerus_scheduler: XerusScheduler) -> None:
        call_count = 0

        async def counter() -> None:
            nonlocal call_count
            call_count += 1

        xerus_scheduler.add_heartbeat("test", 0.1, counter)
        xerus_scheduler.start()
        try:
            await wait_until(lambda: call_count >= 1, timeout=1.0)
        finally:
            xerus_scheduler.stop()
        assert call_count >= 1

    @pytest.mark.asyncio
    async def test_callback_exception_does_not_crash(
        self, xerus_scheduler: XerusScheduler
    ) -> None:
        healthy_count = 0

        async def failing() -> None:
            raise RuntimeError("boom")

        async def healthy() -> None:
            nonlocal healthy_count
            healthy_count += 1

        xerus_scheduler.add_heartbeat("failing", 0.1, failing)
        xerus_scheduler.add_heartbeat("healthy", 0.1, healthy)
        xerus_scheduler.start()
        try:
            await wait_until(lambda: healthy_count >= 2, timeout=2.0)
        finally:
            xerus_scheduler.stop()
        assert xerus_scheduler.running is False


class TestRestart:
    @pytest.mark.asyncio
    async def test_name_reusable_after_stop(self, xerus_scheduler: XerusScheduler) -> None:
        xerus_scheduler.add_heartbeat("sweep", 60, noop)
        xerus_scheduler.start()
        xerus_scheduler.stop()

        sid = xerus_scheduler.add_heartbeat("sweep", 60, noop)
        xerus_scheduler.start()
        try:
            assert xerus_scheduler.job_ids == [sid]
        finally:
            xerus_scheduler.stop()

    def test_remove_then_add_same_name(self, xerus_scheduler: XerusScheduler) -> None:
        sid = xerus_scheduler.add_heartbeat("sweep", 60, noop)
        xerus_scheduler.remove_schedule(sid)
        assert xerus_scheduler.add_heartbeat("sweep", 30, noop) == sid
