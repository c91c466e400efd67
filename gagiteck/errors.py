"""Error types raised by the gagiteck orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Sequence


class ErrorKind(str, Enum):
    """Classification used by retry policies and run error records."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AGENT_ERROR = "agent_error"
    AGENT_NOT_FOUND = "agent_not_found"
    TEMPLATE_ERROR = "template_error"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class GagiteckError(Exception):
    """Base error for gagiteck."""


# ----------------------------------------------------------------------
# Registration-time errors. A workflow raising one of these is rejected.
class InvalidWorkflowError(GagiteckError):
    """Workflow definition failed validation."""


class CyclicDependencyError(InvalidWorkflowError):
    """Step dependencies contain a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = tuple(cycle)
        super().__init__(f"Cyclic dependency: {' -> '.join(self.cycle)}")


class UnknownStepError(InvalidWorkflowError):
    """A step references a step id that does not exist in the workflow."""

    def __init__(self, step_id: str, missing: str, field: str = "depends_on"):
        self.step_id = step_id
        self.missing = missing
        self.field = field
        super().__init__(
            f"Step '{step_id}' {field} references unknown step '{missing}'"
        )


# ----------------------------------------------------------------------
# Run-time errors
class ValidationError(GagiteckError):
    """Trigger input does not satisfy the workflow's input schema."""

    def __init__(self, workflow_id: str, problems: Iterable[str]):
        self.workflow_id = workflow_id
        self.problems = list(problems)
        super().__init__(
            f"Invalid input for workflow '{workflow_id}': " + "; ".join(self.problems)
        )


class TemplateError(GagiteckError):
    """Template or condition could not be parsed or resolved.

    Messages cite the offending path only. Resolved values, in particular
    secrets, are never included.
    """

    kind = ErrorKind.TEMPLATE_ERROR

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


class StepExecutionError(GagiteckError):
    """Base class for failures raised while executing a step."""

    kind: ErrorKind = ErrorKind.AGENT_ERROR


class AgentExecutionError(StepExecutionError):
    """Wraps whatever the agent executor reported."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind | str = ErrorKind.AGENT_ERROR,
        agent_id: Optional[str] = None,
    ):
        self.kind = ErrorKind(kind)
        self.agent_id = agent_id
        super().__init__(message)


class AgentTimeoutError(StepExecutionError):
    """Agent call did not finish within the step timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, agent_id: str, timeout: float):
        self.agent_id = agent_id
        self.timeout = timeout
        super().__init__(f"Agent '{agent_id}' timed out after {timeout:g}s")


class StepCancelledError(StepExecutionError):
    """Step was cancelled because its run was aborted."""

    kind = ErrorKind.CANCELLED


# ----------------------------------------------------------------------
# Lookup errors
class WorkflowNotFoundError(GagiteckError, KeyError):
    """No workflow registered under the requested id."""

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return f"Workflow not found: {self.args[0]}"


class RunNotFoundError(GagiteckError, KeyError):
    """No run recorded under the requested id."""

    def __str__(self) -> str:
        return f"Run not found: {self.args[0]}"


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the :class:`ErrorKind` describing ``exc``."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.AGENT_ERROR
