"""In-memory trigger source for tests and single-process use."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from .base import BaseTriggerSource
from .events import TriggerEvent


class InMemoryTriggerSource(BaseTriggerSource[Tuple[str, TriggerEvent]]):
    """Simple in-process queue."""

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queues: Dict[str, Deque[Tuple[str, TriggerEvent]]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval
        self.acked: List[str] = []

    async def publish(self, topic: str, event: TriggerEvent) -> None:
        raw = (event.to_json(), event)
        async with self._lock:
            self._queues[topic].append(raw)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, TriggerEvent], TriggerEvent]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            async with self._lock:
                raw = self._queues[topic].popleft() if self._queues[topic] else None
            if raw is not None:
                yield raw, raw[1]
                continue

            await asyncio.sleep(self._poll_interval)

    async def ack(self, raw_event: Tuple[str, TriggerEvent]) -> None:
        self.acked.append(raw_event[1].event_id)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])
