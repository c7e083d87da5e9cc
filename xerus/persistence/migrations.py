"""Sequential, idempotent migration runner with SHA-256 checksums."""

from __future__ import annotations

import hashlib
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def _checksum(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _applied_checksums(conn: sqlite3.Connection) -> dict[str, str]:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS _migrations ("
        "  name TEXT PRIMARY KEY,"
        "  checksum TEXT NOT NULL,"
        "  applied_at TEXT NOT NULL"
        ")"
    )
    conn.commit()
    rows = conn.execute("SELECT name, checksum FROM _migrations ORDER BY name").fetchall()
    return {name: checksum for name, checksum in rows}


def _run_migrations_sync(db_path: str, migrations_dir: Path) -> list[str]:
    """Apply pending ``*.sql`` files in name order and return the ones applied.

    Uses the stdlib driver because ``executescript`` is not exposed cleanly by
    aiosqlite and migrations only run once at startup.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    applied_now: list[str] = []
    try:
        applied = _applied_checksums(conn)
        for sql_file in sorted(migrations_dir.glob("*.sql")):
            name = sql_file.name
            checksum = _checksum(sql_file)

            if name in applied:
                if applied[name] != checksum:
                    raise RuntimeError(
                        f"Migration {name} checksum mismatch: "
                        f"applied={applied[name]}, current={checksum}. "
                        f"Previously applied migrations must not be modified."
                    )
                continue

            conn.executescript(sql_file.read_text(encoding="utf-8"))
            conn.execute(
                "INSERT OR IGNORE INTO _migrations (name, checksum, applied_at) VALUES (?, ?, ?)",
                (name, checksum, datetime.now(UTC).isoformat()),
            )
            conn.commit()
            applied_now.append(name)
    finally:
        conn.close()
    return applied_now


async def run_migrations(db_path: str, migrations_dir: Path | None = None) -> list[str]:
    """Apply all pending migrations in order. Fail-fast on checksum mismatch."""
    applied = _run_migrations_sync(db_path, migrations_dir or MIGRATIONS_DIR)
    if applied:
        logger.info("Applied %d migration(s) to %s: %s", len(applied), db_path, ", ".join(applied))
    return applied


__all__ = ["MIGRATIONS_DIR", "run_migrations"]
