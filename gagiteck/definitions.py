"""Workflow definition contracts.

Definitions are parsed from YAML (or any mapping) at registration time and are
immutable afterwards. Runtime state lives in :mod:`gagiteck.models`.
"""

from __future__ import annotations

import copy
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS
from .errors import ErrorKind, InvalidWorkflowError, ValidationError


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class OnError(str, Enum):
    """What to do once a step has failed and its retries are spent."""

    FAIL = "fail"
    SKIP = "skip"
    RETRY = "retry"
    FALLBACK = "fallback"
    CONTINUE = "continue"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    EVENT = "event"


class ParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


_DEFAULT_RETRY_ON = (ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER_ERROR)


class RetryPolicy(BaseModel):
    """Retry settings for a single step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay: float = Field(default=DEFAULT_BASE_DELAY, ge=0)
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    max_delay: Optional[float] = Field(default=None, ge=0)
    jitter: float = Field(default=0.0, ge=0)
    retry_on: Tuple[ErrorKind, ...] = _DEFAULT_RETRY_ON

    @field_validator("retry_on", mode="before")
    @classmethod
    def _normalize_kinds(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple)):
            return tuple(
                v.replace("-", "_").lower() if isinstance(v, str) else v for v in value
            )
        return value

    def should_retry(self, kind: ErrorKind) -> bool:
        return kind in self.retry_on


class InputParam(BaseModel):
    """Declared workflow input parameter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ParamType = ParamType.STRING
    required: bool = False
    default: Any = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_default(self) -> "InputParam":
        if self.default is not None and not self.accepts(self.default):
            raise ValueError(
                f"default must be of type {self.type.value}, "
                f"got {type(self.default).__name__}"
            )
        return self

    def accepts(self, value: Any) -> bool:
        expected = self.type
        if expected is ParamType.ANY:
            return True
        return {
            ParamType.STRING: lambda v: isinstance(v, str),
            ParamType.NUMBER: lambda v: isinstance(v, (int, float))
            and not isinstance(v, bool),
            ParamType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
            ParamType.BOOLEAN: lambda v: isinstance(v, bool),
            ParamType.OBJECT: lambda v: isinstance(v, dict),
            ParamType.ARRAY: lambda v: isinstance(v, (list, tuple)),
        }[expected](value)

    def check(self, name: str, value: Any) -> Optional[str]:
        """Return a problem description when ``value`` does not fit the type."""
        if self.accepts(value):
            return None
        return f"input '{name}' must be of type {self.type.value}, got {type(value).__name__}"


class TriggerSpec(BaseModel):
    """How runs of a workflow are started. Descriptive only."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: TriggerType = TriggerType.MANUAL
    schedule: Optional[str] = None
    event: Optional[str] = None
    path: Optional[str] = None

    @model_validator(mode="after")
    def _check_required_fields(self) -> "TriggerSpec":
        if self.type is TriggerType.SCHEDULE and not self.schedule:
            raise ValueError("schedule trigger requires a 'schedule' expression")
        if self.type is TriggerType.EVENT and not self.event:
            raise ValueError("event trigger requires an 'event' name")
        return self


class StepDefinition(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_-]*$")
    agent: str = Field(min_length=1)
    input: str = ""
    depends_on: Tuple[str, ...] = ()
    condition: Optional[str] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    retry: Optional[RetryPolicy] = None
    on_error: OnError = OnError.FAIL
    fallback: Optional[str] = None
    description: Optional[str] = None

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_depends_on(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self.timeout_ms / 1000 if self.timeout_ms else None


class WorkflowDefinition(BaseModel):
    """Immutable workflow template."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    version: str = "1.0.0"
    description: Optional[str] = None
    trigger: TriggerSpec = Field(default_factory=TriggerSpec)
    inputs: Dict[str, InputParam] = Field(default_factory=dict)
    steps: Tuple[StepDefinition, ...] = Field(min_length=1)
    output: Dict[str, str] = Field(default_factory=dict)

    @field_validator("trigger", mode="before")
    @classmethod
    def _coerce_trigger(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"type": value}
        return value

    @field_validator("inputs", mode="before")
    @classmethod
    def _coerce_inputs(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, list):
            params: Dict[str, Any] = {}
            for entry in value:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise ValueError("input list entries need a 'name'")
                entry = dict(entry)
                params[entry.pop("name")] = entry
            value = params
        if isinstance(value, dict):
            return {
                name: {"type": spec} if isinstance(spec, str) else (spec or {})
                for name, spec in value.items()
            }
        return value

    @property
    def workflow_id(self) -> str:
        return self.name

    def step(self, step_id: str) -> StepDefinition:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def bind_inputs(self, payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Validate ``payload`` against the input schema and apply defaults.

        Raises:
            ValidationError: listing every problem found.
        """
        if payload is not None and not isinstance(payload, Mapping):
            raise ValidationError(self.name, ["input payload must be a mapping"])
        payload = dict(payload or {})
        problems = []
        bound: Dict[str, Any] = {}

        for key in payload:
            if key not in self.inputs:
                problems.append(f"unknown input '{key}'")

        for name, param in self.inputs.items():
            if name in payload:
                value = payload[name]
                problem = param.check(name, value)
                if problem:
                    problems.append(problem)
                    continue
                bound[name] = value
            elif param.required:
                problems.append(f"missing required input '{name}'")
            else:
                bound[name] = copy.deepcopy(param.default)

        if problems:
            raise ValidationError(self.name, problems)
        return bound


def workflow_from_mapping(data: Any, source: str = "<mapping>") -> WorkflowDefinition:
    """Build a :class:`WorkflowDefinition` from parsed document data."""
    if not isinstance(data, dict):
        raise InvalidWorkflowError(f"{source}: workflow document must be a mapping")
    try:
        return WorkflowDefinition.model_validate(data)
    except PydanticValidationError as exc:
        raise InvalidWorkflowError(f"{source}: {exc}") from exc


def parse_workflow(text: str, source: str = "<string>") -> WorkflowDefinition:
    """Parse a YAML workflow document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidWorkflowError(f"{source}: invalid YAML: {exc}") from exc
    return workflow_from_mapping(data, source)


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Load a workflow definition from a YAML file."""
    path = Path(path)
    return parse_workflow(path.read_text(encoding="utf-8"), source=str(path))
