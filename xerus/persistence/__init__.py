"""Persistence: schema migrations for the SQLite working-memory database."""

from xerus.persistence.migrations import run_migrations

__all__ = ["run_migrations"]
