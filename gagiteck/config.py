from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_CANCEL_GRACE_SECONDS,
    DEFAULT_MAX_BACKOFF_SECONDS,
    DEFAULT_TRIGGER_TOPIC,
)
from .definitions import RetryPolicy


class RedisConfig(BaseModel):
    """Configuration for the Redis trigger source."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TriggerConfig(BaseModel):
    """Where trigger events are read from."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    topic: str = DEFAULT_TRIGGER_TOPIC
    redis: RedisConfig = RedisConfig()


class OrchestratorConfig(BaseModel):
    """Scheduling defaults applied to every run."""

    default_timeout_ms: Optional[int] = Field(default=None, gt=0)
    max_backoff_seconds: float = Field(default=DEFAULT_MAX_BACKOFF_SECONDS, ge=0)
    cancel_grace_seconds: float = Field(default=DEFAULT_CANCEL_GRACE_SECONDS, ge=0)
    default_retry: RetryPolicy = RetryPolicy()


class GagiteckConfig(BaseModel):
    """Top-level configuration model."""

    orchestrator: OrchestratorConfig = OrchestratorConfig()
    triggers: TriggerConfig = TriggerConfig()
    database_url: Optional[str] = None
    env: Dict[str, str] = Field(
        default_factory=dict, description="Values exposed to templates as env.*"
    )
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> GagiteckConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GAGITECK_CONFIG env
            variable or 'gagiteck.yaml' in the current directory.
    """

    config_path = path or os.getenv("GAGITECK_CONFIG", "gagiteck.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GagiteckConfig(**data)
    else:
        config = GagiteckConfig()

    env_db_url = os.getenv("GAGITECK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("GAGITECK_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
