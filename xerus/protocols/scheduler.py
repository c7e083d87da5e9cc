from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class TaskScheduler(Protocol):
    @property
    def running(self) -> bool: ...

    def add_heartbeat(
        self, name: str, interval_seconds: float, callback: Callable[[], Awaitable[object]]
    ) -> str: ...

    def remove_schedule(self, schedule_id: str) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


__all__ = ["TaskScheduler"]
