"""SQLite implementation of WorkingMemoryStore."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import aiosqlite

from xerus.models.working_memory import ContextEntry, ContextType

_SCOPE = "agent_id = ? AND user_id = ?"


def _iso(value: datetime) -> str:
    # Fixed-width UTC strings so lexical order in SQL matches time order.
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SQLiteWorkingMemoryStore:
    def __init__(self, db_path: str, *, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=self.timeout)

    async def insert(self, entry: ContextEntry) -> str:
        async with self._connect() as db:
            await db.execute(
                """INSERT INTO working_memory (
                    id, agent_id, user_id, session_id, content, context_type,
                    relevance_score, attention_sink, token_count, created_at,
                    expires_at, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.agent_id,
                    entry.user_id,
                    entry.session_id,
                    json.dumps(entry.content, default=str),
                    entry.context_type.value,
                    entry.relevance_score,
                    int(entry.attention_sink),
                    entry.token_count,
                    _iso(entry.created_at),
                    _iso(entry.expires_at),
                    json.dumps(entry.metadata, default=str),
                ),
            )
            await db.commit()
        return entry.id

    async def list_active(self, agent_id: str, user_id: str, now: datetime) -> list[ContextEntry]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"""SELECT * FROM working_memory
                    WHERE {_SCOPE} AND expires_at > ?
                    ORDER BY created_at DESC""",
                (agent_id, user_id, _iso(now)),
            )
            rows = await cursor.fetchall()
            return [_row_to_entry(r) for r in rows]

    async def query(
        self,
        agent_id: str,
        user_id: str,
        now: datetime,
        *,
        limit: int,
        min_relevance: float = 0.0,
        session_id: str | None = None,
        context_types: list[ContextType] | None = None,
        include_attention_sinks: bool = True,
    ) -> list[ContextEntry]:
        conditions = [_SCOPE, "expires_at > ?", "relevance_score >= ?"]
        params: list[object] = [agent_id, user_id, _iso(now), min_relevance]

        if session_id is not None:
            conditions.append("session_id = ?")
            params.append(session_id)

        if context_types:
            placeholders = ", ".join("?" for _ in context_types)
            conditions.append(f"context_type IN ({placeholders})")
            params.extend(ContextType(t).value for t in context_types)

        if not include_attention_sinks:
            conditions.append("attention_sink = 0")

        params.append(limit)
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"""SELECT * FROM working_memory
                    WHERE {" AND ".join(conditions)}
                    ORDER BY attention_sink DESC, relevance_score DESC, created_at DESC
                    LIMIT ?""",
                params,
            )
            rows = await cursor.fetchall()
            return [_row_to_entry(r) for r in rows]

    async def list_attention_sinks(
        self, agent_id: str, user_id: str, now: datetime
    ) -> list[ContextEntry]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"""SELECT * FROM working_memory
                    WHERE {_SCOPE} AND attention_sink = 1 AND expires_at > ?
                    ORDER BY relevance_score DESC, created_at DESC""",
                (agent_id, user_id, _iso(now)),
            )
            rows = await cursor.fetchall()
            return [_row_to_entry(r) for r in rows]

    async def count_window(self, agent_id: str, user_id: str, now: datetime) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                f"""SELECT COUNT(*) FROM working_memory
                    WHERE {_SCOPE} AND attention_sink = 0 AND expires_at > ?""",
                (agent_id, user_id, _iso(now)),
            )
            row = await cursor.fetchone()
            return int(row[0]) if row else 0

    async def evict_least_relevant(
        self, agent_id: str, user_id: str, now: datetime, count: int
    ) -> list[str]:
        """Delete ``count`` non-sink entries, least relevant then oldest first."""
        if count <= 0:
            return []
        async with self._connect() as db:
            cursor = await db.execute(
                f"""SELECT id FROM working_memory
                    WHERE {_SCOPE} AND attention_sink = 0 AND expires_at > ?
                    ORDER BY relevance_score ASC, created_at ASC
                    LIMIT ?""",
                (agent_id, user_id, _iso(now), count),
            )
            victims = [row[0] for row in await cursor.fetchall()]
            if victims:
                placeholders = ", ".join("?" for _ in victims)
                await db.execute(
                    f"DELETE FROM working_memory WHERE id IN ({placeholders})",
                    victims,
                )
                await db.commit()
            return victims

    async def delete_expired(self, agent_id: str, user_id: str, now: datetime) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                f"DELETE FROM working_memory WHERE {_SCOPE} AND expires_at < ?",
                (agent_id, user_id, _iso(now)),
            )
            await db.commit()
            return cursor.rowcount


def _parse_dt(val: str) -> datetime:
    dt = datetime.fromisoformat(val)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _safe_json(val: str | None, default: object) -> object:
    if val is None:
        return default
    try:
        return json.loads(val)
    except json.JSONDecodeError:
        return default


def _row_to_entry(row: aiosqlite.Row) -> ContextEntry:
    metadata = _safe_json(row["metadata"], {})
    return ContextEntry(
        id=row["id"],
        agent_id=row["agent_id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        content=_safe_json(row["content"], {}),
        context_type=ContextType(row["context_type"]),
        relevance_score=row["relevance_score"],
        attention_sink=bool(row["attention_sink"]),
        token_count=row["token_count"],
        created_at=_parse_dt(row["created_at"]),
        expires_at=_parse_dt(row["expires_at"]),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


__all__ = ["SQLiteWorkingMemoryStore"]
