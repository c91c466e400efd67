"""Route trigger events to workflow runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from ..constants import DEFAULT_TRIGGER_TOPIC
from ..errors import ValidationError, WorkflowNotFoundError
from .base import BaseTriggerSource
from .events import TriggerEvent

if TYPE_CHECKING:
    from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Consumes trigger events and starts the runs they ask for."""

    def __init__(
        self,
        orchestrator: "Orchestrator",
        source: BaseTriggerSource,
        topic: str = DEFAULT_TRIGGER_TOPIC,
    ) -> None:
        self.orchestrator = orchestrator
        self.source = source
        self.topic = topic

    def _targets(self, event: TriggerEvent) -> List[str]:
        if event.workflow_id:
            return [event.workflow_id]
        if event.event:
            return self.orchestrator.workflows_for_event(event.event)
        return []

    async def handle(self, event: TriggerEvent) -> List[str]:
        """Start a run for every workflow addressed by ``event``.

        Events whose payload fails input validation, or that name an unknown
        workflow, are logged and produce no run.
        """
        targets = self._targets(event)
        if not targets:
            logger.warning(f"Trigger event {event.event_id} matched no workflow")
            return []

        run_ids = []
        for workflow_id in targets:
            try:
                run_id = await self.orchestrator.start_run(
                    workflow_id, event.payload, trigger=event.trigger.value
                )
            except ValidationError as e:
                logger.warning(f"Rejected trigger event {event.event_id}: {e}")
                continue
            except WorkflowNotFoundError as e:
                logger.warning(f"Rejected trigger event {event.event_id}: {e}")
                continue
            run_ids.append(run_id)
        return run_ids

    async def serve(self, lifespan: Optional[float] = None) -> List[str]:
        """Consume events until ``lifespan`` elapses. Returns started run ids."""
        started: List[str] = []
        logger.info(f"Listening for trigger events on '{self.topic}'")
        async for raw_event, event in self.source.subscribe(self.topic, lifespan=lifespan):
            started.extend(await self.handle(event))
            await self.source.ack(raw_event)
        return started
