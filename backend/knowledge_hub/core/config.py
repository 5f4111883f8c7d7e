"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from knowledge_hub.core.errors import ChunkingConfigError, ConfigurationError

ENV_PREFIX = "KH_"
DEFAULT_CONFIG_PATH = Path("~/.config/knowledge-hub/config.yaml")

MIB = 1024 * 1024

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "blob_dir"): "blob_dir",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dimensions"): "embedding_dimensions",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "max_attempts"): "embedding_max_attempts",
    ("embeddings", "timeout_seconds"): "embedding_timeout_seconds",
    ("chunking", "max_chars"): "chunk_max_chars",
    ("chunking", "overlap_chars"): "chunk_overlap_chars",
    ("ingest", "small_file_max_bytes"): "small_file_max_bytes",
    ("ingest", "large_file_max_bytes"): "large_file_max_bytes",
    ("ingest", "list_page_size"): "list_page_size",
    ("ingest", "stats_update_max_retries"): "stats_update_max_retries",
    ("queues", "mode"): "queue_mode",
    ("queues", "default", "workers"): "default_lane_workers",
    ("queues", "default", "timeout_seconds"): "default_lane_timeout_seconds",
    ("queues", "default", "max_attempts"): "default_lane_max_attempts",
    ("queues", "large_files", "workers"): "large_lane_workers",
    ("queues", "large_files", "timeout_seconds"): "large_lane_timeout_seconds",
    ("queues", "large_files", "max_attempts"): "large_lane_max_attempts",
    ("retrieval", "top_k"): "query_top_k",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".knowledge-hub" / "kh.db")
    blob_dir: Path = Field(default=Path.home() / ".knowledge-hub" / "blobs")

    embedding_provider: Literal["hashed", "openai"] = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=384, ge=1)
    embedding_api_key: str | None = None
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_batch_size: int = Field(default=100, ge=1)
    embedding_max_attempts: int = Field(default=3, ge=1)
    embedding_timeout_seconds: float = 60.0

    chunk_max_chars: int = Field(default=2000, ge=1)
    chunk_overlap_chars: int = Field(default=200, ge=0)

    small_file_max_bytes: int = 10 * MIB
    large_file_max_bytes: int = 100 * MIB
    list_page_size: int = Field(default=1000, ge=1)
    stats_update_max_retries: int = Field(default=25, ge=1)

    queue_mode: Literal["threads", "inline"] = "threads"
    default_lane_workers: int = Field(default=4, ge=1)
    default_lane_timeout_seconds: float = 1800.0
    default_lane_max_attempts: int = Field(default=3, ge=1)
    large_lane_workers: int = Field(default=1, ge=1)
    large_lane_timeout_seconds: float = 7200.0
    large_lane_max_attempts: int = Field(default=2, ge=1)

    query_top_k: int = Field(default=6, ge=1)

    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "blob_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        if self.chunk_overlap_chars >= self.chunk_max_chars:
            raise ChunkingConfigError(
                f"chunk_overlap_chars ({self.chunk_overlap_chars}) must be smaller than "
                f"chunk_max_chars ({self.chunk_max_chars})"
            )
        if self.small_file_max_bytes > self.large_file_max_bytes:
            raise ConfigurationError("small_file_max_bytes cannot exceed large_file_max_bytes")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with KH_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "MIB"]
