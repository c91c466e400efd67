"""Dependency graph construction and validation for workflow steps."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Tuple

from .definitions import OnError, WorkflowDefinition
from .errors import CyclicDependencyError, InvalidWorkflowError, UnknownStepError

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass(frozen=True)
class WorkflowGraph:
    """Validated step graph.

    Steps are addressed by integer handles assigned in declaration order so the
    scheduler never has to look identifiers up again.
    """

    step_ids: Tuple[str, ...]
    handles: Mapping[str, int]
    dependencies: Tuple[Tuple[int, ...], ...]
    dependents: Tuple[Tuple[int, ...], ...]
    fallbacks: Mapping[int, int]
    fallback_only: FrozenSet[int]

    def __len__(self) -> int:
        return len(self.step_ids)

    def handle(self, step_id: str) -> int:
        return self.handles[step_id]

    @property
    def in_degree(self) -> Tuple[int, ...]:
        """Number of unresolved dependencies per handle."""
        return tuple(len(deps) for deps in self.dependencies)

    @property
    def scheduled(self) -> Tuple[int, ...]:
        """Handles the scheduler runs on its own (fallback-only steps excluded)."""
        return tuple(h for h in range(len(self.step_ids)) if h not in self.fallback_only)

    def roots(self) -> List[str]:
        return [self.step_ids[h] for h in self.scheduled if not self.dependencies[h]]

    def topological_order(self) -> List[str]:
        """Kahn ordering of scheduled steps, ties broken by declaration order."""
        remaining = list(self.in_degree)
        queue = deque(h for h in self.scheduled if remaining[h] == 0)
        order: List[str] = []
        while queue:
            current = queue.popleft()
            order.append(self.step_ids[current])
            for child in self.dependents[current]:
                remaining[child] -= 1
                if remaining[child] == 0 and child not in self.fallback_only:
                    queue.append(child)
        return order

    def ancestors(self, step_id: str) -> FrozenSet[str]:
        """Return every step ``step_id`` transitively depends on."""
        seen: set[int] = set()
        stack = list(self.dependencies[self.handle(step_id)])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.dependencies[current])
        return frozenset(self.step_ids[h] for h in seen)


def _find_cycle(dependencies: Tuple[Tuple[int, ...], ...]) -> List[int] | None:
    """Three-colour DFS. Returns the handles of the first cycle found."""
    colour = [_WHITE] * len(dependencies)
    path: List[int] = []

    for start in range(len(dependencies)):
        if colour[start] != _WHITE:
            continue
        colour[start] = _GRAY
        path.append(start)
        stack = [iter(dependencies[start])]
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                colour[path.pop()] = _BLACK
            elif colour[dep] == _GRAY:
                return path[path.index(dep):] + [dep]
            elif colour[dep] == _WHITE:
                colour[dep] = _GRAY
                path.append(dep)
                stack.append(iter(dependencies[dep]))
    return None


def build_graph(definition: WorkflowDefinition) -> WorkflowGraph:
    """Validate ``definition`` and build its dependency graph.

    Raises:
        InvalidWorkflowError: duplicate ids or an inconsistent fallback setup.
        UnknownStepError: ``depends_on`` or ``fallback`` names a missing step.
        CyclicDependencyError: the dependencies contain a cycle.
    """
    handles: Dict[str, int] = {}
    for index, step in enumerate(definition.steps):
        if step.id in handles:
            raise InvalidWorkflowError(
                f"Workflow '{definition.name}' has duplicate step id '{step.id}'"
            )
        handles[step.id] = index

    dependencies: List[Tuple[int, ...]] = []
    dependents: List[List[int]] = [[] for _ in definition.steps]
    fallbacks: Dict[int, int] = {}

    for index, step in enumerate(definition.steps):
        deps: List[int] = []
        for dep_id in step.depends_on:
            if dep_id not in handles:
                raise UnknownStepError(step.id, dep_id)
            dep = handles[dep_id]
            if dep in deps:
                continue
            deps.append(dep)
            dependents[dep].append(index)
        dependencies.append(tuple(deps))

        if step.on_error is OnError.FALLBACK and not step.fallback:
            raise InvalidWorkflowError(
                f"Step '{step.id}' uses on_error: fallback without a fallback step"
            )
        if step.fallback:
            if step.on_error is not OnError.FALLBACK:
                raise InvalidWorkflowError(
                    f"Step '{step.id}' names fallback '{step.fallback}' "
                    "but on_error is not 'fallback'"
                )
            if step.fallback not in handles:
                raise UnknownStepError(step.id, step.fallback, field="fallback")
            if step.fallback == step.id:
                raise InvalidWorkflowError(f"Step '{step.id}' cannot be its own fallback")
            fallbacks[index] = handles[step.fallback]

    cycle = _find_cycle(tuple(dependencies))
    if cycle:
        # DFS walks dependency edges; report the cycle in execution order.
        names = [definition.steps[h].id for h in reversed(cycle)]
        raise CyclicDependencyError(names)

    fallback_only = frozenset(fallbacks.values())
    for handle in fallback_only:
        step = definition.steps[handle]
        if step.on_error is OnError.FALLBACK:
            raise InvalidWorkflowError(
                f"Fallback step '{step.id}' cannot declare its own fallback"
            )
        if dependents[handle]:
            users = ", ".join(definition.steps[h].id for h in dependents[handle])
            raise InvalidWorkflowError(
                f"Fallback step '{step.id}' cannot be a dependency (used by {users})"
            )

    graph = WorkflowGraph(
        step_ids=tuple(step.id for step in definition.steps),
        handles=handles,
        dependencies=tuple(dependencies),
        dependents=tuple(tuple(children) for children in dependents),
        fallbacks=fallbacks,
        fallback_only=fallback_only,
    )
    logger.debug(
        f"Built graph for workflow '{definition.name}' with {len(graph)} steps, "
        f"roots={graph.roots()}"
    )
    return graph
