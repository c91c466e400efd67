"""Repository abstraction for workflow run persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..models import WorkflowRun


class RunRepository(Protocol):
    """Protocol for run snapshot persistence backends."""

    async def save_run(self, run: WorkflowRun) -> None:
        """Insert or replace the stored snapshot of ``run``."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve a run snapshot by id."""

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[WorkflowRun]:
        """Return stored runs, optionally limited to one workflow."""
