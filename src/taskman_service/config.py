"""
Configuration management for the TaskMan service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class ExpirationConfig(BaseModel):
    """Claim expiration policy."""

    model_config = ConfigDict(extra="forbid")
    base_multiplier: float
    difficulty_step: float
    min_seconds: int
    max_seconds: int
    type_multipliers: dict[str, float]

    @model_validator(mode="after")
    def _check_bounds(self) -> ExpirationConfig:
        if self.min_seconds <= 0 or self.max_seconds < self.min_seconds:
            msg = "expiration bounds must satisfy 0 < min_seconds <= max_seconds"
            raise ValueError(msg)
        return self


class LifecycleConfig(BaseModel):
    """Task lifecycle behaviour."""

    model_config = ConfigDict(extra="forbid")
    allow_creator_accept: bool
    release_retry_attempts: int

    @field_validator("release_retry_attempts")
    @classmethod
    def _check_retries(cls, value: int) -> int:
        if value < 1:
            msg = "release_retry_attempts must be >= 1"
            raise ValueError(msg)
        return value


class SweeperConfig(BaseModel):
    """Expiration sweeper configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    interval_seconds: float

    @field_validator("interval_seconds")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)
        return value


class LedgerConfig(BaseModel):
    """Token ledger query limits."""

    model_config = ConfigDict(extra="forbid")
    history_default_limit: int
    history_max_limit: int


class ValidationConfig(BaseModel):
    """Solution validator tolerances."""

    model_config = ConfigDict(extra="forbid")
    arithmetic_tolerance: float
    color_match_default_tolerance: float


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    expiration: ExpirationConfig
    lifecycle: LifecycleConfig
    sweeper: SweeperConfig
    ledger: LedgerConfig
    validation: ValidationConfig


def get_config_path() -> Path:
    """
    Determine configuration file path.

    Uses CONFIG_PATH when set, otherwise config.yaml at the project root.
    """
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return _PROJECT_ROOT / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Parse and validate a YAML config file."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Drop cached settings. Used in testing."""
    get_settings.cache_clear()
