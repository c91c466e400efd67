"""Registration-time compilation of workflow definitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, Mapping, Optional, Tuple

from .conditions import Condition, parse_condition
from .definitions import StepDefinition, WorkflowDefinition
from .errors import TemplateError
from .graph import WorkflowGraph, build_graph
from .templating import Template, parse_template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledStep:
    definition: StepDefinition
    handle: int
    template: Template
    condition: Optional[Condition]
    allowed_steps: FrozenSet[str]

    @property
    def id(self) -> str:
        return self.definition.id


@dataclass(frozen=True)
class CompiledWorkflow:
    """A validated definition with its graph, templates and conditions parsed."""

    definition: WorkflowDefinition
    graph: WorkflowGraph
    steps: Tuple[CompiledStep, ...]
    outputs: Mapping[str, Template]

    @property
    def workflow_id(self) -> str:
        return self.definition.workflow_id

    def step(self, step_id: str) -> CompiledStep:
        return self.steps[self.graph.handle(step_id)]


def compile_workflow(definition: WorkflowDefinition) -> CompiledWorkflow:
    """Validate ``definition`` fully. Nothing is compiled if any check fails."""
    graph = build_graph(definition)

    steps = []
    for handle, step in enumerate(definition.steps):
        try:
            template = parse_template(step.input)
        except TemplateError as exc:
            raise TemplateError(f"Step '{step.id}' input: {exc.message}", exc.path) from exc
        condition = parse_condition(step.condition) if step.condition else None
        allowed = graph.ancestors(step.id)

        stray = template.step_references() - allowed
        if stray and handle not in graph.fallback_only:
            logger.warning(
                f"Workflow '{definition.name}' step '{step.id}' references "
                f"{sorted(stray)} which it does not depend on"
            )
        steps.append(
            CompiledStep(
                definition=step,
                handle=handle,
                template=template,
                condition=condition,
                allowed_steps=allowed,
            )
        )

    outputs = {}
    for key, source in definition.output.items():
        try:
            outputs[key] = parse_template(source)
        except TemplateError as exc:
            raise TemplateError(f"Output '{key}': {exc.message}", exc.path) from exc

    return CompiledWorkflow(
        definition=definition, graph=graph, steps=tuple(steps), outputs=outputs
    )
