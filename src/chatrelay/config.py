"""Typed configuration models for chatrelay.

Defaults are baked into the models, ``config.toml`` (when present) is
layered on top, and the process environment wins last. Resolution happens
once at startup; there is no hot reload.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

log = logging.getLogger(__name__)

_MODEL_OVERRIDE_PREFIX = "AI_MODEL_"


class HostedConfig(BaseModel):
    token: str = ""
    endpoint: str = "https://models.github.ai/inference"
    api_version: str = "2024-12-01-preview"


class GroqConfig(BaseModel):
    api_key: str = ""
    base_url: str | None = None


class GeminiConfig(BaseModel):
    api_key: str = ""
    api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"


class ModelsConfig(BaseModel):
    default: str = "meta/Llama-4-Maverick-17B-128E-Instruct-FP8"
    overrides: dict[str, str] = Field(default_factory=dict)

    @field_validator("default", mode="before")
    @classmethod
    def strip_model_name(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("overrides", mode="before")
    @classmethod
    def normalise_slots(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k).upper(): str(val).strip() for k, val in v.items() if val}
        return v


class TransportConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=300, ge=0)
    max_retry_delay_ms: int = Field(default=2000, ge=0)
    timeout_seconds: float = Field(default=15.0, gt=0)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0)
    history_window: int = Field(default=3, ge=1)


class RateLimitConfig(BaseModel):
    enabled: bool = True
    limit: int = Field(default=10, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class RuntimeConfig(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False
    log_dir: str | None = None
    module_levels: dict[str, str] | None = None

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class StorageConfig(BaseModel):
    db_path: str = "data/chatrelay.db"


class RelayConfig(BaseModel):
    """Root configuration model."""

    hosted: HostedConfig = Field(default_factory=HostedConfig)
    groq: GroqConfig = Field(default_factory=GroqConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    model_config = {"extra": "ignore"}


# (section, key) targets for plain environment variables
_ENV_KEYS: dict[str, tuple[str, str]] = {
    "GITHUB_TOKEN": ("hosted", "token"),
    "AI_ENDPOINT": ("hosted", "endpoint"),
    "AI_API_VERSION": ("hosted", "api_version"),
    "AI_MODEL": ("models", "default"),
    "GROQ_API_KEY": ("groq", "api_key"),
    "GROQ_BASE_URL": ("groq", "base_url"),
    "GEMINI_API_KEY": ("gemini", "api_key"),
    "GEMINI_API_URL": ("gemini", "api_url"),
    "CHATRELAY_LOG_LEVEL": ("runtime", "log_level"),
    "CHATRELAY_LOG_DIR": ("runtime", "log_dir"),
    "CHATRELAY_DB_PATH": ("storage", "db_path"),
    "CHATRELAY_RATE_LIMIT": ("rate_limit", "limit"),
}


def _apply_environment(raw: dict[str, Any], environ: Mapping[str, str]) -> None:
    for env_key, (section, key) in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            raw.setdefault(section, {})[key] = value

    overrides: dict[str, str] = {}
    for env_key, value in environ.items():
        if env_key.startswith(_MODEL_OVERRIDE_PREFIX) and value:
            overrides[env_key[len(_MODEL_OVERRIDE_PREFIX):]] = value
    if overrides:
        models = raw.setdefault("models", {})
        merged = dict(models.get("overrides", {}))
        merged.update(overrides)
        models["overrides"] = merged


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RelayConfig:
    """Load and validate configuration, returning a typed RelayConfig.

    Missing file or sections are filled with defaults.
    Raises pydantic.ValidationError on invalid values.
    """
    config_path = path or Path("config.toml")
    raw: dict[str, Any] = {}

    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    if environ is None:
        load_dotenv()
        environ = os.environ
    _apply_environment(raw, environ)

    config = RelayConfig.model_validate(raw)
    log.debug(
        "config.loaded path=%s default_model=%s overrides=%d "
        "hosted=%s groq=%s gemini=%s",
        config_path,
        config.models.default,
        len(config.models.overrides),
        bool(config.hosted.token),
        bool(config.groq.api_key),
        bool(config.gemini.api_key),
    )
    return config
