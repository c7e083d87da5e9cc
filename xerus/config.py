from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkingMemoryConfig(BaseModel):
    max_entries: int = Field(default=50, ge=1)
    """Sliding-window bound on non-sink, non-expired entries per scope."""
    relevance_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    attention_sink_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    expiration_hours: float = Field(default=1.0, gt=0.0)
    cleanup_interval_seconds: float = Field(default=300.0, gt=0.0)
    conversation_window: int = Field(default=10, ge=1)
    """Conversation exchanges kept by the buffer-window conversation memory."""
    db_timeout_seconds: float = Field(default=5.0, gt=0.0)

    @model_validator(mode="after")
    def _sink_threshold_above_admission(self) -> WorkingMemoryConfig:
        if self.attention_sink_threshold < self.relevance_threshold:
            raise ValueError("attention_sink_threshold must be >= relevance_threshold")
        return self

    @property
    def ttl_seconds(self) -> float:
        return self.expiration_hours * 3600.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class TelemetryConfig(BaseModel):
    """OpenTelemetry tracing configuration."""

    enabled: bool = False
    endpoint: str = "localhost:4317"
    env: str = "dev"


class XerusSettings(BaseSettings):
    data_dir: Path = Path("./data")
    db_filename: str = "working_memory.db"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    working_memory: WorkingMemoryConfig = Field(default_factory=WorkingMemoryConfig)

    model_config = SettingsConfigDict(
        env_prefix="XERUS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename


def _coerce_env_value(value: str) -> object:
    parsed = yaml.safe_load(value)
    return value if parsed is None else parsed


def _set_nested(mapping: dict[str, object], path: list[str], value: object) -> None:
    current = mapping
    for key in path[:-1]:
        existing = current.get(key)
        if not isinstance(existing, dict):
            existing = {}
            current[key] = existing
        current = existing
    current[path[-1]] = value


def _apply_env_overrides(data: dict[str, object]) -> dict[str, object]:
    merged = dict(data)
    prefix = "XERUS_"
    for key, raw_value in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[len(prefix) :].lower().split("__")
        _set_nested(merged, path, _coerce_env_value(raw_value))
    return merged


def load_config(path: str | Path = "config/xerus.yaml") -> XerusSettings:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(loaded, dict):
        raise ValueError("config file must contain a top-level mapping")

    raw = loaded.get("xerus", loaded)
    if not isinstance(raw, dict):
        raise ValueError("xerus config section must be a mapping")

    return XerusSettings.model_validate(_apply_env_overrides(raw))


__all__ = [
    "LoggingConfig",
    "TelemetryConfig",
    "WorkingMemoryConfig",
    "XerusSettings",
    "load_config",
]
