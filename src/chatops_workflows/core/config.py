"""Configuration management for the workflow automation core.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level


class StoreConfig(BaseModel):
    """Configuration for workflow persistence."""

    backend: Literal["auto", "memory", "redis"] = Field(
        default="auto",
        description="Store backend; 'auto' uses Redis when redis_url is set",
    )
    redis_url: str | None = Field(default=None, description="Redis connection URL")
    namespace: str = Field(
        default="adept:workflows", description="Redis hash holding workflow records"
    )
    socket_timeout: float = Field(
        default=5.0, gt=0.0, description="Redis socket timeout (seconds)"
    )
    connect_timeout: float = Field(
        default=5.0, gt=0.0, description="Redis connect timeout (seconds)"
    )

    @model_validator(mode="after")
    def ensure_redis_url(self) -> StoreConfig:
        if self.backend == "redis" and not self.redis_url:
            raise ValueError("Redis backend selected but redis_url missing")
        return self


class SchedulerConfig(BaseModel):
    """Configuration for the APScheduler-backed workflow scheduler."""

    enabled: bool = Field(default=True, description="Enable schedule triggers")
    timezone: str = Field(default="UTC", description="Default timezone for cron schedules")
    max_workers: int = Field(default=10, description="Maximum thread pool workers")
    misfire_grace_time: int = Field(default=60, description="Grace time for missed runs (seconds)")
    overlap_policy: Literal["skip", "queue"] = Field(
        default="skip",
        description="What to do when a workflow fires while its previous run is still active",
    )

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be at least 1")
        return value


class WorkflowSettings(BaseSettings):
    """Root settings for the workflow automation core."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOWS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    store: StoreConfig = Field(default_factory=StoreConfig, description="Persistence settings")
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig, description="Scheduler settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> WorkflowSettings:
        """Load settings from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_json(cls, path: str | Path) -> WorkflowSettings:
        """Load settings from a JSON file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""

        return self.model_dump()
