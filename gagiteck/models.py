"""Runtime records for workflow runs and their steps."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepStatus(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            StepStatus.SUCCEEDED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.CANCELLED,
        )

    @property
    def satisfies_dependents(self) -> bool:
        """``skipped`` counts as satisfied, the same as ``succeeded``."""
        return self in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)


class StepError(BaseModel):
    kind: ErrorKind
    message: str


class RunError(BaseModel):
    """Final error record of a failed or cancelled run."""

    step_id: Optional[str] = None
    output_key: Optional[str] = None
    kind: ErrorKind
    message: str


class StepRun(BaseModel):
    """Execution record for a single step."""

    step_id: str
    agent: str
    status: StepStatus = StepStatus.PENDING
    resolved_input: Optional[str] = Field(
        default=None, description="Resolved input with secret values redacted"
    )
    output: Any = None
    error: Optional[StepError] = None
    attempts: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    fallback_used: Optional[str] = None
    skip_reason: Optional[str] = None

    def mark_started(self) -> None:
        self.status = StepStatus.RUNNING
        if self.started_at is None:
            self.started_at = utcnow()

    def finish(
        self,
        status: StepStatus,
        *,
        output: Any = None,
        error: Optional[StepError] = None,
        skip_reason: Optional[str] = None,
    ) -> None:
        self.status = status
        self.output = output
        if error is not None:
            self.error = error
        if skip_reason is not None:
            self.skip_reason = skip_reason
        self.ended_at = utcnow()
        if self.started_at is not None:
            delta = self.ended_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000


class WorkflowRun(BaseModel):
    """A single execution instance of a workflow."""

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    workflow_version: str = "1.0.0"
    trigger: str = "manual"
    inputs: Dict[str, Any] = Field(default_factory=dict)
    steps: Dict[str, StepRun] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[RunError] = None

    def snapshot(self) -> "WorkflowRun":
        """Return a deep copy safe to hand to callers."""
        return self.model_copy(deep=True)

    def step_statuses(self) -> Dict[str, StepStatus]:
        return {step_id: step.status for step_id, step in self.steps.items()}

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowRun":
        return cls.model_validate_json(data)
