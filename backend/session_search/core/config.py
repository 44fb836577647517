"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "SESSION_SEARCH_"
DEFAULT_CONFIG_PATH = Path("~/.config/session-search/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("index", "reindex_interval_s"): "reindex_interval_s",
    ("index", "metadata_cache_ttl_s"): "metadata_cache_ttl_s",
    ("search", "fuzzy_enabled"): "fuzzy_enabled",
    ("search", "fuzzy_limit"): "fuzzy_limit",
    ("search", "default_limit"): "default_limit",
    ("search", "max_limit"): "max_limit",
    ("search", "candidate_multiplier"): "candidate_multiplier",
    ("search", "candidate_floor"): "candidate_floor",
    ("search", "snippet_tokens"): "snippet_tokens",
    ("search", "timeout_s"): "search_timeout_s",
    ("weights", "display"): "display_weight",
    ("weights", "project"): "project_weight",
    ("weights", "content"): "content_weight",
    ("watch", "roots"): "watch_roots",
    ("watch", "polling"): "watch_polling",
}

_MAPPING_FIELDS = {"watch_roots"}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".session-search" / "search.db")
    reindex_interval_s: float = Field(default=30.0, gt=0)
    metadata_cache_ttl_s: float = Field(default=5.0, ge=0)
    fuzzy_enabled: bool = True
    fuzzy_limit: int = Field(default=300, ge=1)
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=100, ge=1)
    candidate_multiplier: int = Field(default=10, ge=1)
    candidate_floor: int = Field(default=300, ge=1)
    snippet_tokens: int = Field(default=24, ge=1, le=64)
    search_timeout_s: float = Field(default=5.0, gt=0)
    display_weight: float = 10.0
    project_weight: float = 5.0
    content_weight: float = 1.0
    watch_roots: dict[str, Path] = Field(
        default_factory=lambda: {
            "claude": Path("~/.claude/projects"),
            "codex": Path("~/.codex/sessions"),
            "factory": Path("~/.factory/sessions"),
        }
    )
    watch_polling: bool = False

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("watch_roots", mode="before")
    @classmethod
    def _parse_watch_roots(cls, value: Any) -> Any:
        # env vars arrive as "claude=~/.claude/projects,codex=~/.codex/sessions"
        if isinstance(value, str):
            roots: dict[str, str] = {}
            for part in value.split(","):
                if "=" not in part:
                    continue
                source, _, path = part.partition("=")
                roots[source.strip()] = path.strip()
            return roots
        return value

    @field_validator("watch_roots", mode="after")
    @classmethod
    def _expand_watch_roots(cls, value: dict[str, Path]) -> dict[str, Path]:
        return {source: Path(path).expanduser() for source, path in value.items()}

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
        if isinstance(value, Mapping) and mapped_key not in _MAPPING_FIELDS and key not in _MAPPING_FIELDS:
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif mapped_key:
            flat[mapped_key] = value
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with SESSION_SEARCH_ prefix into Settings fields."""
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


__all__ = ["Settings", "get_settings"]
