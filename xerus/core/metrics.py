"""Prometheus metrics for the working-memory cache.

Module-level singletons shared by every cache instance in the process; the
per-instance view lives in ``WorkingMemoryCache.get_stats()``.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, generate_latest

WM_STORE_TOTAL = Counter(
    "xerus_working_memory_store_total",
    "Working-memory store attempts by outcome",
    ["outcome"],
)
WM_STORE_DURATION_SECONDS = Histogram(
    "xerus_working_memory_store_duration_seconds",
    "Working-memory store latency in seconds",
)
WM_ATTENTION_SINKS_TOTAL = Counter(
    "xerus_working_memory_attention_sinks_total",
    "Entries promoted to attention sinks",
)
WM_EVICTIONS_TOTAL = Counter(
    "xerus_working_memory_evictions_total",
    "Entries removed by sliding-window maintenance",
)
WM_EXPIRED_TOTAL = Counter(
    "xerus_working_memory_expired_total",
    "Entries removed by the expiration sweep",
)
WM_RETRIEVE_FAILURES_TOTAL = Counter(
    "xerus_working_memory_retrieve_failures_total",
    "Durable-store reads that failed open",
)
WM_ACTIVE_CACHES = Gauge(
    "xerus_working_memory_active_caches",
    "Initialized working-memory caches in this process",
)
metrics_generate_latest = generate_latest


@contextmanager
def observe_store_duration() -> Iterator[None]:
    """Observe the wall time of a store call, even when it raises."""
    start = time.monotonic()
    try:
        yield
    finally:
        WM_STORE_DURATION_SECONDS.observe(time.monotonic() - start)


__all__ = [
    "WM_ACTIVE_CACHES",
    "WM_ATTENTION_SINKS_TOTAL",
    "WM_EVICTIONS_TOTAL",
    "WM_EXPIRED_TOTAL",
    "WM_RETRIEVE_FAILURES_TOTAL",
    "WM_STORE_DURATION_SECONDS",
    "WM_STORE_TOTAL",
    "metrics_generate_latest",
    "observe_store_duration",
]
