"""Resolve parsed templates against a run's bound state."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, FrozenSet, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..constants import REDACTED
from ..errors import TemplateError
from ..models import StepRun
from ..security import SecretStore, StaticSecretStore
from .filters import FILTERS
from .parser import Expression, FilterCall, Template, parse_template

if TYPE_CHECKING:
    from ..config import GagiteckConfig


@dataclass(frozen=True)
class ResolverContext:
    """Process-wide values injected into the resolver.

    Passed explicitly so concurrent runs (and tests) can use distinct
    overrides.
    """

    env: Mapping[str, str] = field(default_factory=dict)
    secrets: SecretStore = field(default_factory=StaticSecretStore)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @classmethod
    def from_config(
        cls, config: "GagiteckConfig", secrets: Optional[SecretStore] = None
    ) -> "ResolverContext":
        from ..security import EnvSecretStore

        return cls(env=config.env, secrets=secrets or EnvSecretStore())


@dataclass(frozen=True)
class Bindings:
    """Snapshot of the variables a template may read.

    ``allowed_steps`` of ``None`` means every step may be referenced.
    """

    inputs: Mapping[str, Any]
    steps: Mapping[str, StepRun] = field(default_factory=dict)
    allowed_steps: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class ResolvedTemplate:
    text: str
    redacted: str
    secret_values: Tuple[str, ...] = field(default=(), repr=False)


_MISSING = object()


def _descend(value: Any, rest: Sequence[str], path: str) -> Any:
    for segment in rest:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise TemplateError("Cannot read attribute of plain text", path) from None
        if isinstance(value, Mapping):
            value = value.get(segment, _MISSING)
        elif isinstance(value, (list, tuple)) and segment.isdigit():
            index = int(segment)
            value = value[index] if index < len(value) else _MISSING
        elif isinstance(value, BaseModel):
            value = getattr(value, segment, _MISSING)
        else:
            value = _MISSING
        if value is _MISSING:
            raise TemplateError("Unresolved path", path)
    return value


def lookup(
    path: Sequence[str],
    bindings: Bindings,
    context: ResolverContext,
    *,
    allow_secrets: bool = True,
) -> Tuple[Any, bool]:
    """Return ``(value, is_secret)`` for a parsed reference path."""
    dotted = ".".join(path)
    root, key, rest = path[0], path[1], path[2:]

    if root == "inputs":
        if key not in bindings.inputs:
            raise TemplateError("Unknown input", dotted)
        return _descend(bindings.inputs[key], rest, dotted), False

    if root == "env":
        if key not in context.env:
            raise TemplateError("Unknown environment value", dotted)
        return _descend(context.env[key], rest, dotted), False

    if root == "secrets":
        if not allow_secrets:
            raise TemplateError("Secrets cannot be referenced here", dotted)
        value = context.secrets.get(key)
        if value is None:
            raise TemplateError("Secret not found", dotted)
        return value, True

    if root == "steps":
        if bindings.allowed_steps is not None and key not in bindings.allowed_steps:
            raise TemplateError("Step is not a dependency of this step", dotted)
        step = bindings.steps.get(key)
        if step is None:
            raise TemplateError("Unknown step", dotted)
        if not rest:
            raise TemplateError("Step reference needs 'output' or 'status'", dotted)
        attribute, rest = rest[0], rest[1:]
        if attribute == "status":
            return step.status.value, False
        if attribute == "output":
            if not step.status.is_terminal:
                raise TemplateError("Step has not produced output yet", dotted)
            if step.output is None and rest:
                raise TemplateError("Step produced no output", dotted)
            return _descend(step.output, rest, dotted), False
        raise TemplateError(f"Unknown step attribute '{attribute}'", dotted)

    raise TemplateError(f"Unknown reference root '{root}'", dotted)


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def apply_filter(call: FilterCall, value: Any, path: str, is_secret: bool = False) -> Any:
    func = FILTERS.get(call.name)
    if func is None:
        raise TemplateError(f"Unknown filter '{call.name}'", path)
    try:
        return func(value, call.arg)
    except (TypeError, ValueError, ArithmeticError) as exc:
        detail = type(exc).__name__ if is_secret else str(exc)
        raise TemplateError(f"Filter '{call.name}' failed: {detail}", path) from None


class TemplateResolver:
    """Turn templates into concrete strings.

    Resolution is a pure function of the template, the bindings and the
    context; only secret lookups touch an external collaborator.
    """

    def __init__(self, context: Optional[ResolverContext] = None) -> None:
        self.context = context or ResolverContext()

    def evaluate(self, expression: Expression, bindings: Bindings) -> Tuple[Any, bool]:
        value, _, is_secret = self._evaluate(expression, bindings)
        return value, is_secret

    def _evaluate(
        self, expression: Expression, bindings: Bindings
    ) -> Tuple[Any, Any, bool]:
        """Return the filtered value, the unfiltered value and the secret flag."""
        raw, is_secret = lookup(expression.path, bindings, self.context)
        value = raw
        for call in expression.filters:
            value = apply_filter(call, value, expression.dotted, is_secret)
        return value, raw, is_secret

    def resolve(self, template: Template | str, bindings: Bindings) -> ResolvedTemplate:
        if isinstance(template, str):
            template = parse_template(template)
        text: list[str] = []
        redacted: list[str] = []
        secrets: list[str] = []
        for part in template.parts:
            if isinstance(part, Expression):
                value, raw, is_secret = self._evaluate(part, bindings)
                rendered = render_value(value)
                text.append(rendered)
                if is_secret:
                    # Both the filtered and the raw form are redacted from errors.
                    redacted.append(REDACTED)
                    secrets.extend((rendered, render_value(raw)))
                else:
                    redacted.append(rendered)
            else:
                text.append(part.value)
                redacted.append(part.value)
        return ResolvedTemplate(
            text="".join(text), redacted="".join(redacted), secret_values=tuple(secrets)
        )

    def resolve_value(self, template: Template | str, bindings: Bindings) -> Any:
        """Resolve a template; a lone expression keeps its native value.

        Used for output mappings where ``{{ steps.x.output }}`` should not be
        stringified.
        """
        if isinstance(template, str):
            template = parse_template(template)
        if len(template.parts) == 1 and isinstance(template.parts[0], Expression):
            value, is_secret = self.evaluate(template.parts[0], bindings)
            return REDACTED if is_secret else value
        return self.resolve(template, bindings).redacted
