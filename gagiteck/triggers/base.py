"""Base interface for trigger event sources."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from .events import TriggerEvent

RawEventT = TypeVar("RawEventT")


class BaseTriggerSource(Generic[RawEventT], metaclass=abc.ABCMeta):
    """Abstract queue that trigger events are published to and read from."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: TriggerEvent) -> None:
        """Send an event to a topic."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawEventT, TriggerEvent]]:
        """Yield raw message and parsed event pairs.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_event: RawEventT) -> None:
        """Acknowledge that an event was handled."""
        raise NotImplementedError
