"""In-memory implementation of the run repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import WorkflowRun
from .repository import RunRepository


class InMemoryRunRepository(RunRepository):
    """Store run snapshots in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, WorkflowRun] = {}

    async def save_run(self, run: WorkflowRun) -> None:
        self._runs[run.run_id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[WorkflowRun]:
        return [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if workflow_id is None or run.workflow_id == workflow_id
        ]
