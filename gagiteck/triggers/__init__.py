"""Trigger source factory and dispatcher."""

from __future__ import annotations

import os
from typing import Optional

from ..config import GagiteckConfig, load_config
from .base import BaseTriggerSource
from .dispatcher import TriggerDispatcher
from .events import TriggerEvent
from .inmemory import InMemoryTriggerSource


def get_trigger_source(
    backend: Optional[str] = None, config: Optional[GagiteckConfig] = None
) -> BaseTriggerSource:
    """Factory function to get the configured trigger source."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("GAGITECK_TRIGGER_BACKEND")
        or config.triggers.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryTriggerSource()
    elif backend == "redis":
        from .redis import RedisTriggerSource

        redis_conf = config.triggers.redis
        return RedisTriggerSource(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported trigger backend: {backend}")


__all__ = [
    "BaseTriggerSource",
    "InMemoryTriggerSource",
    "TriggerDispatcher",
    "TriggerEvent",
    "get_trigger_source",
]
