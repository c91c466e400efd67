"""Workflow orchestrator: registration, run start, inspection and cancel."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import GagiteckConfig, load_config
from .definitions import (
    TriggerType,
    WorkflowDefinition,
    load_workflow,
    workflow_from_mapping,
)
from .errors import RunNotFoundError, WorkflowNotFoundError
from .executor import BaseAgentExecutor
from .models import WorkflowRun
from .persistence import RunRepository
from .scheduler import RunScheduler, new_run
from .templating import ResolverContext, TemplateResolver
from .workflow import CompiledWorkflow, compile_workflow

logger = logging.getLogger(__name__)

WorkflowSource = Union[WorkflowDefinition, Mapping[str, Any], str, Path]


class Orchestrator:
    """Entry point used by trigger collaborators and inspection tools.

    Runs proceed independently; the only shared collaborators are the agent
    executor, the resolver context (secret store) and the repository.
    """

    def __init__(
        self,
        executor: BaseAgentExecutor,
        context: Optional[ResolverContext] = None,
        repository: Optional[RunRepository] = None,
        config: Optional[GagiteckConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.executor = executor
        self.resolver = TemplateResolver(
            context or ResolverContext.from_config(self.config)
        )
        self.repository = repository
        self._workflows: Dict[str, CompiledWorkflow] = {}
        self._active: Dict[str, RunScheduler] = {}
        self._runs: Dict[str, WorkflowRun] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Registration
    def register_workflow(self, source: WorkflowSource) -> str:
        """Validate and register a workflow definition.

        Registration errors (cycles, unknown steps, malformed templates or
        conditions) propagate to the caller and nothing is registered.
        """
        if isinstance(source, WorkflowDefinition):
            definition = source
        elif isinstance(source, Mapping):
            definition = workflow_from_mapping(dict(source))
        else:
            definition = load_workflow(source)

        compiled = compile_workflow(definition)
        workflow_id = compiled.workflow_id
        if workflow_id in self._workflows:
            logger.info(f"Replacing workflow '{workflow_id}' with version {definition.version}")
        self._workflows[workflow_id] = compiled
        logger.info(
            f"Registered workflow '{workflow_id}' v{definition.version} "
            f"({len(definition.steps)} steps, trigger={definition.trigger.type.value})"
        )
        return workflow_id

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self._compiled(workflow_id).definition

    def list_workflows(self) -> List[WorkflowDefinition]:
        return [compiled.definition for compiled in self._workflows.values()]

    def workflows_for_event(self, event: str) -> List[str]:
        """Return ids of workflows whose trigger listens for ``event``."""
        return [
            workflow_id
            for workflow_id, compiled in self._workflows.items()
            if compiled.definition.trigger.type is TriggerType.EVENT
            and compiled.definition.trigger.event == event
        ]

    def _compiled(self, workflow_id: str) -> CompiledWorkflow:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(workflow_id) from None

    # ------------------------------------------------------------------
    # Runs
    async def start_run(
        self,
        workflow_id: str,
        input_payload: Optional[Mapping[str, Any]] = None,
        trigger: str = "manual",
    ) -> str:
        """Start a run and return its id without waiting for it to finish.

        Raises:
            WorkflowNotFoundError: ``workflow_id`` is not registered.
            ValidationError: ``input_payload`` does not fit the input schema.
        """
        compiled = self._compiled(workflow_id)
        inputs = compiled.definition.bind_inputs(input_payload)
        run = new_run(compiled, inputs, trigger=trigger)

        scheduler = RunScheduler(
            compiled,
            run,
            self.executor,
            self.resolver,
            self.config.orchestrator,
            on_update=self._persist if self.repository is not None else None,
        )
        self._runs[run.run_id] = run
        self._active[run.run_id] = scheduler
        if self.repository is not None:
            await self.repository.save_run(run.snapshot())

        task = asyncio.create_task(self._drive(scheduler), name=f"run:{run.run_id}")
        self._tasks[run.run_id] = task
        logger.info(
            f"Started run {run.run_id} of workflow '{workflow_id}' (trigger={trigger})"
        )
        return run.run_id

    async def _drive(self, scheduler: RunScheduler) -> None:
        run_id = scheduler.run.run_id
        try:
            await scheduler.execute()
        except Exception as exc:
            logger.exception(f"Run {run_id}: scheduler crashed")
            await scheduler.abort(exc)
        finally:
            self._active.pop(run_id, None)
            self._tasks.pop(run_id, None)
            # Finished runs are served from the repository once persisted.
            if self.repository is not None:
                self._runs.pop(run_id, None)

    async def _persist(self, run: WorkflowRun) -> None:
        await self.repository.save_run(run.snapshot())

    async def get_run(self, run_id: str) -> WorkflowRun:
        """Return a read-only snapshot of a run."""
        run = self._runs.get(run_id)
        if run is not None:
            return run.snapshot()
        if self.repository is not None:
            stored = await self.repository.get_run(run_id)
            if stored is not None:
                return stored
        raise RunNotFoundError(run_id)

    async def wait_for_run(self, run_id: str, timeout: Optional[float] = None) -> WorkflowRun:
        """Wait until ``run_id`` is terminal and return its final snapshot."""
        task = self._tasks.get(run_id)
        if task is None:
            return await self.get_run(run_id)
        await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_run(run_id)

    async def run_workflow(
        self,
        workflow_id: str,
        input_payload: Optional[Mapping[str, Any]] = None,
        trigger: str = "manual",
        timeout: Optional[float] = None,
    ) -> WorkflowRun:
        """Start a run and wait for its terminal snapshot."""
        run_id = await self.start_run(workflow_id, input_payload, trigger=trigger)
        return await self.wait_for_run(run_id, timeout=timeout)

    async def cancel_run(self, run_id: str) -> bool:
        """Request cancellation. Returns ``False`` if the run already finished."""
        scheduler = self._active.get(run_id)
        if scheduler is None:
            if run_id not in self._runs:
                await self.get_run(run_id)
            return False
        logger.info(f"Cancellation requested for run {run_id}")
        scheduler.cancel()
        return True

    async def list_runs(self, workflow_id: Optional[str] = None) -> List[WorkflowRun]:
        runs = {
            run_id: run.snapshot()
            for run_id, run in self._runs.items()
            if workflow_id is None or run.workflow_id == workflow_id
        }
        if self.repository is not None:
            for stored in await self.repository.list_runs(workflow_id):
                runs.setdefault(stored.run_id, stored)
        return sorted(runs.values(), key=lambda r: r.created_at)

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to settle."""
        for scheduler in list(self._active.values()):
            scheduler.cancel()
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
