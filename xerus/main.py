"""Process bootstrap for embedding the working-memory service in a host app."""

from __future__ import annotations

import logging
from pathlib import Path

from xerus.config import XerusSettings, load_config
from xerus.core.logging import setup_logging
from xerus.core.telemetry import init_tracing
from xerus.memory.conversation import BufferWindowConversationMemory
from xerus.memory.registry import WorkingMemoryRegistry, create_registry

logger = logging.getLogger(__name__)


async def start_working_memory(
    config_path: str | Path | None = None,
    *,
    settings: XerusSettings | None = None,
) -> WorkingMemoryRegistry:
    """Configure logging and tracing, migrate storage, and return a ready registry.

    ``settings`` wins over ``config_path``; with neither, defaults plus
    ``XERUS_*`` environment variables apply.
    """
    if settings is None:
        settings = load_config(config_path) if config_path is not None else XerusSettings()

    setup_logging(settings.logging.level, json_output=settings.logging.json_output)
    init_tracing(settings.telemetry)

    window = settings.working_memory.conversation_window
    registry = await create_registry(
        settings,
        conversation_factory=lambda: BufferWindowConversationMemory(k=window),
    )
    logger.info("Working memory ready (db=%s)", settings.db_path)
    return registry


__all__ = ["start_working_memory"]
