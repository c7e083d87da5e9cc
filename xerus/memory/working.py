"""Sliding-window working memory for one (agent, user) scope.

Two tiers: the durable store is the source of truth; an in-process mirror
serves ``get_context()`` without a round trip. The mirror is updated
incrementally on insert, filtered by swap after eviction, and rebuilt
wholesale after the expiration sweep or on ``initialize()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Any

from xerus.config import WorkingMemoryConfig
from xerus.core.logging import correlation_scope
from xerus.core.metrics import (
    WM_ACTIVE_CACHES,
    WM_ATTENTION_SINKS_TOTAL,
    WM_EVICTIONS_TOTAL,
    WM_EXPIRED_TOTAL,
    WM_RETRIEVE_FAILURES_TOTAL,
    WM_STORE_TOTAL,
    observe_store_duration,
)
from xerus.core.telemetry import get_tracer
from xerus.memory.conversation import NullConversationMemory
from xerus.memory.scoring import (
    calculate_relevance,
    determine_context_type,
    estimate_tokens,
    is_attention_sink,
)
from xerus.models.conversation import ConversationContext, ConversationMessage
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
from xerus.protocols.memory import ConversationMemory, WorkingMemoryStore
from xerus.protocols.scheduler import TaskScheduler
from xerus.scheduler.ap_scheduler import XerusScheduler

logger = logging.getLogger(__name__)

_TRACER = get_tracer("xerus.memory")

SLIDING_WINDOW_SESSION = "sliding_window"
CLOSE_SCORE_TOLERANCE = 0.1


@dataclass(slots=True)
class _Counters:
    cache_hits: int = 0
    cache_misses: int = 0
    stored: int = 0
    rejected: int = 0
    evicted: int = 0
    expired: int = 0
    retrieval_failures: int = 0
    attention_sinks_promoted: int = 0


def _coerce_context(context: ObservationContext | Mapping[str, Any] | None) -> ObservationContext:
    if context is None:
        return ObservationContext()
    if isinstance(context, ObservationContext):
        return context
    return ObservationContext.model_validate(dict(context))


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000.0, 3)


def _context_order(a: ContextEntry, b: ContextEntry) -> int:
    """Sinks first, then clearly higher relevance, then newest."""
    if a.attention_sink != b.attention_sink:
        return -1 if a.attention_sink else 1
    diff = b.relevance_score - a.relevance_score
    if abs(diff) > CLOSE_SCORE_TOLERANCE:
        return 1 if diff > 0 else -1
    if a.created_at == b.created_at:
        return 0
    return 1 if b.created_at > a.created_at else -1


def _render_entry(entry: ContextEntry) -> str:
    content = entry.content
    if isinstance(content, Mapping) and content.get("role"):
        return f"{content['role']}: {content.get('content', '')}"
    return f"context: {json.dumps(content, default=str)}"


class WorkingMemoryCache:
    """Bounded, relevance-ranked context cache for one ``(agent_id, user_id)`` pair.

    Args:
        agent_id: Agent half of the scope key.
        user_id: User half of the scope key.
        store: Durable store holding the ``working_memory`` rows.
        config: Window size, thresholds, TTL and sweep interval.
        scheduler: Scheduler for the expiration sweep. When omitted the cache
            creates one and stops it on ``shutdown()``.
        conversation_memory: Optional conversation buffer; defaults to a null
            implementation, which leaves the cache in degraded mode.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        agent_id: str | int,
        user_id: str | int,
        store: WorkingMemoryStore,
        *,
        config: WorkingMemoryConfig | None = None,
        scheduler: TaskScheduler | None = None,
        conversation_memory: ConversationMemory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.agent_id = str(agent_id)
        self.user_id = str(user_id)
        self.config = config or WorkingMemoryConfig()
        self._store = store
        self._owns_scheduler = scheduler is None
        self._scheduler: TaskScheduler = scheduler if scheduler is not None else XerusScheduler()
        self._conversation: ConversationMemory = (
            conversation_memory if conversation_memory is not None else NullConversationMemory()
        )
        self._clock = clock
        self._lock = asyncio.Lock()
        self._mirror: dict[str, ContextEntry] = {}
        self._sinks: set[str] = set()
        self._sweep_id: str | None = None
        self._initialized = False
        self._counters = _Counters()
        self.conversation_enabled = False

    @property
    def scope_id(self) -> str:
        return f"{self.agent_id}:{self.user_id}"

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the scope from the durable store and start the expiration sweep.

        Idempotent. A store failure here propagates: the cache is unusable
        without its first load.
        """
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            with correlation_scope(scope_id=self.scope_id):
                await self._reload_mirror()
                self._start_sweep()
                self.conversation_enabled = await self._initialize_conversation()
                self._initialized = True
                WM_ACTIVE_CACHES.inc()
                logger.info(
                    "Working memory initialized for agent %s - %d items, %d attention sinks, "
                    "conversation memory: %s",
                    self.agent_id,
                    len(self._mirror),
                    len(self._sinks),
                    self.conversation_enabled,
                )

    async def shutdown(self) -> None:
        """Stop the expiration sweep. Safe to call more than once."""
        if self._sweep_id is not None:
            try:
                self._scheduler.remove_schedule(self._sweep_id)
            except KeyError:
                logger.debug("Sweep %s was already removed", self._sweep_id)
            self._sweep_id = None
        if self._owns_scheduler:
            self._scheduler.stop()
        if self._initialized:
            WM_ACTIVE_CACHES.dec()
            self._initialized = False
            logger.info("Working memory for %s shut down", self.scope_id)

    def _start_sweep(self) -> None:
        if self._sweep_id is None:
            self._sweep_id = self._scheduler.add_heartbeat(
                f"working_memory_sweep:{self.scope_id}",
                self.config.cleanup_interval_seconds,
                self.sweep_expired,
            )
        self._scheduler.start()

    async def _initialize_conversation(self) -> bool:
        try:
            enabled = await self._conversation.initialize()
        except Exception:
            logger.warning("Conversation memory failed to initialize; continuing without it", exc_info=True)
            return False
        if not enabled:
            logger.info("Conversation memory unavailable; working memory runs in degraded mode")
        return bool(enabled)

    async def _reload_mirror(self) -> None:
        entries = await self._store.list_active(self.agent_id, self.user_id, self._clock())
        mirror = {entry.id: entry for entry in entries}
        sinks = {entry.id for entry in entries if entry.attention_sink}
        # Swap both references together; readers never see a partial view.
        self._mirror, self._sinks = mirror, sinks

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store(
        self,
        content: Any,
        context: ObservationContext | Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> StoreResult:
        """Score, admit and persist one observation, then enforce the window bound.

        Never raises: persistence problems come back as ``stored=False`` with
        ``error`` set.
        """
        start = time.monotonic()
        meta = dict(metadata or {})
        with (
            correlation_scope(scope_id=self.scope_id),
            _TRACER.start_as_current_span("working_memory.store") as span,
            observe_store_duration(),
        ):
            try:
                if not self._initialized:
                    await self.initialize()
                ctx = _coerce_context(context)
                flags = StoreFlags.from_metadata(meta)
                now = self._clock()
                relevance = calculate_relevance(content, ctx, flags, now=now)
                span.set_attribute("relevance_score", relevance)

                if relevance < self.config.relevance_threshold and not flags.force_store:
                    self._counters.rejected += 1
                    WM_STORE_TOTAL.labels(outcome="rejected").inc()
                    logger.info("Skipping low relevance content: %.2f", relevance)
                    return StoreResult(
                        stored=False,
                        reason="low_relevance",
                        relevance_score=relevance,
                        response_time_ms=_elapsed_ms(start),
                    )

                sink = is_attention_sink(
                    relevance,
                    content,
                    ctx,
                    flags,
                    threshold=self.config.attention_sink_threshold,
                )
                entry = ContextEntry(
                    id=str(uuid.uuid4()),
                    agent_id=self.agent_id,
                    user_id=self.user_id,
                    session_id=ctx.session_id or DEFAULT_SESSION_ID,
                    content=content,
                    context_type=determine_context_type(content, ctx, flags),
                    relevance_score=relevance,
                    attention_sink=sink,
                    token_count=estimate_tokens(content),
                    created_at=now,
                    expires_at=now + timedelta(seconds=self.config.ttl_seconds),
                    metadata=meta,
                )

                async with self._lock:
                    await self._store.insert(entry)
                    self._mirror[entry.id] = entry
                    if sink:
                        self._sinks.add(entry.id)
                    await self._maintain_locked()
            except Exception as exc:
                WM_STORE_TOTAL.labels(outcome="failed").inc()
                logger.exception("Working memory store failed")
                return StoreResult(
                    stored=False,
                    error=str(exc),
                    response_time_ms=_elapsed_ms(start),
                )

            self._counters.stored += 1
            WM_STORE_TOTAL.labels(outcome="stored").inc()
            if sink:
                self._counters.attention_sinks_promoted += 1
                WM_ATTENTION_SINKS_TOTAL.inc()

            response_time_ms = _elapsed_ms(start)
            with correlation_scope(session_id=entry.session_id, entry_id=entry.id):
                logger.info(
                    "Stored %s - relevance: %.2f, attention sink: %s (%.1fms)",
                    entry.context_type.value,
                    relevance,
                    sink,
                    response_time_ms,
                )
            return StoreResult(
                stored=True,
                id=entry.id,
                relevance_score=relevance,
                is_attention_sink=sink,
                response_time_ms=response_time_ms,
            )

    async def maintain_sliding_window(self) -> int:
        """Evict least-relevant, oldest non-sink entries beyond ``max_entries``."""
        async with self._lock:
            return await self._maintain_locked()

    async def _maintain_locked(self) -> int:
        try:
            now = self._clock()
            count = await self._store.count_window(self.agent_id, self.user_id, now)
            excess = count - self.config.max_entries
            if excess <= 0:
                return 0
            victims = await self._store.evict_least_relevant(
                self.agent_id, self.user_id, now, excess
            )
        except Exception:
            logger.exception("Sliding window maintenance failed")
            return 0

        if victims:
            evicted = set(victims)
            self._mirror = {k: v for k, v in self._mirror.items() if k not in evicted}
            self._sinks = self._sinks - evicted
            self._counters.evicted += len(victims)
            WM_EVICTIONS_TOTAL.inc(len(victims))
            logger.info(
                "Removed %d least relevant items to maintain sliding window", len(victims)
            )
        return len(victims)

    async def sweep_expired(self) -> int:
        """Delete every expired entry in scope, sinks included, and rebuild the mirror."""
        with correlation_scope(scope_id=self.scope_id):
            try:
                async with self._lock:
                    removed = await self._store.delete_expired(
                        self.agent_id, self.user_id, self._clock()
                    )
                    if removed > 0:
                        await self._reload_mirror()
            except Exception:
                logger.exception("Expiration sweep failed")
                return 0

            if removed > 0:
                self._counters.expired += removed
                WM_EXPIRED_TOTAL.inc(removed)
                logger.info("Cleaned up %d expired items", removed)
            return removed

    async def sync_with_sliding_window(self, entries: Sequence[Any] | None) -> SyncResult:
        """Bulk-ingest snapshots from the renderer's sliding-window buffer.

        Best effort: a bad entry is counted in ``errors`` and the batch goes on.
        """
        if not isinstance(entries, list | tuple):
            return SyncResult()

        logger.info("Syncing with %d sliding window entries", len(entries))
        synced = 0
        errors = 0
        for raw in entries:
            try:
                window_entry = (
                    raw
                    if isinstance(raw, SlidingWindowEntry)
                    else SlidingWindowEntry.model_validate(raw)
                )
                context = ObservationContext(
                    session_id=window_entry.session_id or SLIDING_WINDOW_SESSION,
                    timestamp=window_entry.timestamp,
                    source=SLIDING_WINDOW_SESSION,
                )
                metadata = {
                    "is_attention_sink": window_entry.marks_attention_sink,
                    "from_sliding_window": True,
                    "window_index": window_entry.index,
                }
                result = await self.store(window_entry.content, context, metadata)
            except Exception:
                logger.warning("Failed to sync sliding window entry", exc_info=True)
                errors += 1
                continue

            if result.error is not None:
                errors += 1
            else:
                synced += 1

        logger.info("Sliding window sync complete - synced: %d, errors: %d", synced, errors)
        return SyncResult(synced=synced, errors=errors)

    async def add_item(self, item: Mapping[str, Any]) -> StoreResult:
        """Force-store an API item shaped ``{content, context?, metadata?, type?, timestamp?}``."""
        if "content" not in item:
            raise ValueError("item requires 'content'")
        context = dict(item.get("context") or {})
        if item.get("timestamp") is not None:
            context.setdefault("timestamp", item["timestamp"])
        metadata = {
            **(item.get("metadata") or {}),
            "type": item.get("type", "user_input"),
            "force_store": True,
        }
        return await self.store(item["content"], context, metadata)

    async def add_conversation_message(
        self,
        role: str,
        content: str,
        context: ObservationContext | Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> StoreResult:
        """Record a conversational turn in working memory and the conversation buffer."""
        ctx = _coerce_context(context).model_copy(update={"conversation_message": True})
        result = await self.store(
            {"role": role, "content": content, "timestamp": self._clock().isoformat()},
            ctx,
            {**(metadata or {}), "is_conversation_message": True},
        )

        if self.conversation_enabled:
            try:
                await self._conversation.add_message(role, content)
            except ValueError:
                logger.warning("Unknown message role %r; not added to conversation memory", role)
            except Exception:
                logger.warning("Failed to add message to conversation memory", exc_info=True)
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str = "",
        context: ObservationContext | Mapping[str, Any] | None = None,
        options: RetrieveOptions | Mapping[str, Any] | None = None,
    ) -> list[ContextEntry]:
        """Ranked read from the durable store: sinks, then relevance, then recency.

        Fails open: any error is logged and yields ``[]``.
        """
        opts = (
            options
            if isinstance(options, RetrieveOptions)
            else RetrieveOptions.model_validate(options or {})
        )
        with (
            correlation_scope(scope_id=self.scope_id),
            _TRACER.start_as_current_span(
                "working_memory.retrieve",
                attributes={
                    "query": query,
                    "limit": opts.limit,
                    "min_relevance": opts.min_relevance,
                    "session_only": opts.session_only,
                },
            ),
        ):
            start = time.monotonic()
            try:
                if not self._initialized:
                    await self.initialize()
                ctx = _coerce_context(context)
                entries = await self._store.query(
                    self.agent_id,
                    self.user_id,
                    self._clock(),
                    limit=opts.limit,
                    min_relevance=opts.min_relevance,
                    session_id=ctx.session_id if opts.session_only else None,
                    context_types=opts.context_types,
                    include_attention_sinks=opts.include_attention_sinks,
                )
            except Exception:
                self._counters.cache_misses += 1
                self._counters.retrieval_failures += 1
                WM_RETRIEVE_FAILURES_TOTAL.inc()
                logger.exception("Working memory retrieval failed")
                return []

            self._counters.cache_hits += 1
            logger.debug("Retrieved %d items (%.1fms)", len(entries), _elapsed_ms(start))
            return entries

    def get_context(self, limit: int | None = None) -> list[ContextEntry]:
        """Serve ranked, unexpired entries straight from the in-process mirror."""
        now = self._clock()
        live = [entry for entry in self._mirror.values() if not entry.is_expired(now)]
        live.sort(key=cmp_to_key(_context_order))
        self._counters.cache_hits += 1
        return live[: self.config.max_entries if limit is None else limit]

    async def get_attention_sinks(self) -> list[ContextEntry]:
        try:
            return await self._store.list_attention_sinks(self.agent_id, self.user_id, self._clock())
        except Exception:
            logger.exception("Failed to get attention sinks")
            return []

    async def get_conversation_context(
        self,
        max_messages: int = 10,
        include_working_memory: bool = True,
    ) -> ConversationContext:
        """Combine the conversation buffer with conversational working-memory entries."""
        messages: list[ConversationMessage] = []
        sections: list[str] = []
        source = "working_memory_only"

        if self.conversation_enabled:
            try:
                history = await self._conversation.load_context()
            except Exception:
                logger.warning("Conversation memory retrieval failed", exc_info=True)
            else:
                messages = history[-max_messages:]
                source = "hybrid"
                if history:
                    sections.append("\n".join(message.render() for message in history))

        if include_working_memory:
            items = await self.retrieve(
                "conversation",
                options=RetrieveOptions(limit=max_messages, context_types=[ContextType.text]),
            )
            if items:
                sections.append("\n".join(_render_entry(item) for item in items))

        return ConversationContext(messages=messages, context="\n\n".join(sections), source=source)

    def get_stats(self) -> WorkingMemoryStats:
        entries = list(self._mirror.values())
        average = sum(e.relevance_score for e in entries) / len(entries) if entries else 0.0
        counters = self._counters
        requests = counters.cache_hits + counters.cache_misses
        return WorkingMemoryStats(
            initialized=self._initialized,
            agent_id=self.agent_id,
            user_id=self.user_id,
            total_items=len(entries),
            attention_sink_count=len(self._sinks),
            average_relevance=average,
            cache_hits=counters.cache_hits,
            cache_misses=counters.cache_misses,
            cache_hit_rate=(counters.cache_hits / requests * 100.0) if requests else 0.0,
            stored_count=counters.stored,
            rejected_count=counters.rejected,
            evicted_count=counters.evicted,
            expired_count=counters.expired,
            retrieval_failures=counters.retrieval_failures,
            conversation_enabled=self.conversation_enabled,
            config=self.config.model_dump(),
        )


__all__ = ["WorkingMemoryCache"]
