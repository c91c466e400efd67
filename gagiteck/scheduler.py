"""Drive a single workflow run from ``pending`` to a terminal state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .config import OrchestratorConfig
from .definitions import OnError, RetryPolicy, StepDefinition
from .errors import (
    AgentExecutionError,
    AgentTimeoutError,
    ErrorKind,
    StepCancelledError,
    StepExecutionError,
    TemplateError,
    error_kind,
)
from .executor import BaseAgentExecutor
from .models import RunError, RunStatus, StepError, StepRun, StepStatus, WorkflowRun, utcnow
from .security import redact
from .templating import Bindings, ResolvedTemplate, Template, TemplateResolver
from .utils import retry
from .workflow import CompiledStep, CompiledWorkflow

logger = logging.getLogger(__name__)

RunObserver = Callable[[WorkflowRun], Awaitable[None]]


@dataclass
class StepOutcome:
    """Result handed from a step task back to the scheduler."""

    output: Any = None
    error: Optional[BaseException] = None
    fallback_used: Optional[str] = None
    secrets: Tuple[str, ...] = ()

    def step_error(self) -> StepError:
        return StepError(
            kind=error_kind(self.error), message=redact(str(self.error), self.secrets)
        )


class RunScheduler:
    """Schedules the steps of one :class:`WorkflowRun`.

    The scheduler coroutine is the only writer of the run's aggregate state.
    Step tasks touch nothing but their own :class:`StepRun`.
    """

    def __init__(
        self,
        workflow: CompiledWorkflow,
        run: WorkflowRun,
        executor: BaseAgentExecutor,
        resolver: TemplateResolver,
        settings: Optional[OrchestratorConfig] = None,
        on_update: Optional[RunObserver] = None,
    ) -> None:
        self.workflow = workflow
        self.run = run
        self.executor = executor
        self.resolver = resolver
        self.settings = settings or OrchestratorConfig()
        self._on_update = on_update
        self._graph = workflow.graph
        self._remaining = list(self._graph.in_degree)
        self._tasks: Dict[asyncio.Task, int] = {}
        self._cancel_requested = asyncio.Event()
        self._transition_lock = asyncio.Lock()
        self._abort: Optional[RunError] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    def cancel(self) -> None:
        """Request cancellation. Running steps are cancelled asynchronously."""
        self._cancel_requested.set()

    async def abort(self, exc: BaseException) -> None:
        """Fail the run after the scheduling loop itself raised ``exc``."""
        if self._abort is None:
            self._abort = RunError(
                kind=ErrorKind.INTERNAL_ERROR,
                message=f"Scheduler error: {type(exc).__name__}: {exc}",
            )
        await self._shutdown()
        await self._transition(RunStatus.FAILED, self._abort)

    async def execute(self) -> WorkflowRun:
        run = self.run
        run.status = RunStatus.RUNNING
        run.started_at = utcnow()
        logger.info(f"Run {run.run_id} of workflow '{run.workflow_id}' started")

        for handle in self._graph.scheduled:
            if self._remaining[handle]:
                self._step_run(handle).status = StepStatus.BLOCKED
        await self._notify()

        for handle in self._graph.scheduled:
            if self._remaining[handle] == 0 and await self._evaluate_ready(handle):
                await self._settle(handle)

        cancel_waiter = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            while self._tasks and self._abort is None:
                if self._cancel_requested.is_set():
                    break
                done, _ = await asyncio.wait(
                    set(self._tasks) | {cancel_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    handle = self._tasks.pop(task)
                    if await self._complete(handle, self._task_outcome(task, handle)):
                        await self._settle(handle)
        except asyncio.CancelledError:
            self._cancel_requested.set()
            await self._finish()
            raise
        finally:
            cancel_waiter.cancel()

        await self._finish()
        return run

    # ------------------------------------------------------------------
    # Readiness and completion
    def _step_run(self, handle: int) -> StepRun:
        return self.run.steps[self._graph.step_ids[handle]]

    def _bindings(self, compiled: CompiledStep) -> Bindings:
        return Bindings(
            inputs=self.run.inputs,
            steps=self.run.steps,
            allowed_steps=compiled.allowed_steps,
        )

    async def _evaluate_ready(self, handle: int) -> bool:
        """Called once every dependency of ``handle`` is terminal.

        Returns ``True`` when the step settled without being dispatched and its
        dependents can be released.
        """
        if self._abort is not None or self._cancel_requested.is_set():
            return False
        compiled = self.workflow.steps[handle]
        step_run = self._step_run(handle)

        for dep in self._graph.dependencies[handle]:
            dep_run = self._step_run(dep)
            if not dep_run.status.satisfies_dependents:
                step_run.finish(StepStatus.CANCELLED, skip_reason="upstream_failed")
                logger.info(
                    f"Run {self.run.run_id}: step '{compiled.id}' cancelled, "
                    f"dependency '{dep_run.step_id}' is {dep_run.status.value}"
                )
                await self._notify()
                return True

        if compiled.condition is not None:
            try:
                proceed = compiled.condition.evaluate(
                    self._bindings(compiled), self.resolver.context
                )
            except TemplateError as exc:
                return await self._complete(handle, StepOutcome(error=exc))
            if not proceed:
                step_run.finish(StepStatus.SKIPPED, skip_reason="condition")
                logger.info(
                    f"Run {self.run.run_id}: step '{compiled.id}' skipped, "
                    f"condition '{compiled.condition.source}' is false"
                )
                await self._notify()
                return True

        step_run.status = StepStatus.READY
        task = asyncio.create_task(
            self._run_step(compiled), name=f"{self.run.run_id}:{compiled.id}"
        )
        self._tasks[task] = handle
        return False

    async def _settle(self, handle: int) -> None:
        """Release dependents of a step that reached a terminal state.

        Steps that settle immediately (skipped or cancelled) are pushed back on
        the work list so long chains do not recurse.
        """
        settled = [handle]
        while settled:
            current = settled.pop()
            for child in self._graph.dependents[current]:
                if child in self._graph.fallback_only:
                    continue
                self._remaining[child] -= 1
                if self._remaining[child] == 0 and await self._evaluate_ready(child):
                    settled.append(child)

    def _task_outcome(self, task: asyncio.Task, handle: int) -> StepOutcome:
        try:
            return task.result()
        except Exception as exc:
            logger.exception(
                f"Run {self.run.run_id}: step '{self._graph.step_ids[handle]}' "
                "crashed unexpectedly"
            )
            return StepOutcome(error=AgentExecutionError(f"{type(exc).__name__}: {exc}"))

    async def _complete(self, handle: int, outcome: StepOutcome) -> bool:
        """Record a step outcome. Returns ``True`` when dependents may be released."""
        compiled = self.workflow.steps[handle]
        step_run = self._step_run(handle)
        step_id = compiled.id

        if outcome.fallback_used:
            step_run.fallback_used = outcome.fallback_used

        if outcome.error is None:
            step_run.finish(StepStatus.SUCCEEDED, output=outcome.output)
            logger.info(f"Run {self.run.run_id}: step '{step_id}' succeeded")
            await self._notify()
            return True

        error = outcome.step_error()
        policy = compiled.definition.on_error
        if policy is OnError.SKIP:
            step_run.finish(StepStatus.SKIPPED, error=error, skip_reason="error")
            logger.warning(
                f"Run {self.run.run_id}: step '{step_id}' failed ({error.kind.value}), "
                "skipping per on_error policy"
            )
            await self._notify()
            return True

        step_run.finish(StepStatus.FAILED, error=error)
        if policy is OnError.CONTINUE:
            logger.warning(
                f"Run {self.run.run_id}: step '{step_id}' failed ({error.kind.value}), "
                "continuing per on_error policy"
            )
            await self._notify()
            return True

        logger.error(
            f"Run {self.run.run_id}: step '{step_id}' failed ({error.kind.value}): "
            f"{error.message}"
        )
        if self._abort is None:
            self._abort = RunError(step_id=step_id, kind=error.kind, message=error.message)
        await self._notify()
        return False

    # ------------------------------------------------------------------
    # Step execution (runs inside step tasks)
    def _retry_policy(self, definition: StepDefinition) -> Optional[RetryPolicy]:
        if definition.retry is not None:
            return definition.retry
        if definition.on_error is OnError.RETRY:
            return self.settings.default_retry
        return None

    def _timeout(self, definition: StepDefinition) -> Optional[float]:
        if definition.timeout_seconds:
            return definition.timeout_seconds
        if self.settings.default_timeout_ms:
            return self.settings.default_timeout_ms / 1000
        return None

    def _guard(self) -> None:
        if self._closed:
            raise StepCancelledError("Run was aborted")

    async def _call_agent(self, definition: StepDefinition, resolved: ResolvedTemplate) -> Any:
        timeout = self._timeout(definition)
        try:
            return await asyncio.wait_for(
                self.executor.execute(definition.agent, resolved.text, timeout), timeout
            )
        except asyncio.TimeoutError:
            raise AgentTimeoutError(definition.agent, timeout) from None
        except StepExecutionError:
            raise
        except Exception as exc:
            raise AgentExecutionError(
                f"{type(exc).__name__}: {exc}", agent_id=definition.agent
            ) from exc

    async def _attempt(
        self, definition: StepDefinition, resolved: ResolvedTemplate, step_run: StepRun
    ) -> Any:
        """Call the agent, retrying per the step's policy.

        ``step_run`` is only touched for the step's own definition, not for a
        fallback running in its place.
        """
        policy = self._retry_policy(definition)
        max_attempts = policy.max_attempts if policy else 1
        own_step = definition.id == step_run.step_id

        attempt = 0
        while True:
            attempt += 1
            if own_step:
                step_run.attempts = attempt
            try:
                output = await self._call_agent(definition, resolved)
                self._guard()
                return output
            except StepExecutionError as exc:
                kind = error_kind(exc)
                if (
                    policy is None
                    or kind is ErrorKind.CANCELLED
                    or attempt >= max_attempts
                    or not policy.should_retry(kind)
                ):
                    raise
                delay = retry.policy_backoff(
                    policy, attempt, self.settings.max_backoff_seconds
                )
                logger.warning(
                    f"Run {self.run.run_id}: step '{definition.id}' attempt "
                    f"{attempt}/{max_attempts} failed ({kind.value}), "
                    f"retrying in {delay:.2f}s"
                )
                await retry.schedule_retry(delay)
                self._guard()

    async def _execute_definition(
        self,
        definition: StepDefinition,
        template: Template,
        bindings: Bindings,
        step_run: StepRun,
    ) -> StepOutcome:
        try:
            resolved = self.resolver.resolve(template, bindings)
        except TemplateError as exc:
            return StepOutcome(error=exc)
        if definition.id == step_run.step_id:
            step_run.resolved_input = resolved.redacted
        try:
            output = await self._attempt(definition, resolved, step_run)
        except StepExecutionError as exc:
            return StepOutcome(error=exc, secrets=resolved.secret_values)
        return StepOutcome(output=output)

    async def _run_step(self, compiled: CompiledStep) -> StepOutcome:
        definition = compiled.definition
        step_run = self._step_run(compiled.handle)
        bindings = self._bindings(compiled)
        step_run.mark_started()
        logger.info(
            f"Run {self.run.run_id}: step '{definition.id}' running agent '{definition.agent}'"
        )
        outcome = await self._execute_definition(
            definition, compiled.template, bindings, step_run
        )
        if (
            outcome.error is None
            or definition.on_error is not OnError.FALLBACK
            or isinstance(outcome.error, StepCancelledError)
        ):
            return outcome

        fallback = self.workflow.steps[self._graph.fallbacks[compiled.handle]]
        logger.warning(
            f"Run {self.run.run_id}: step '{definition.id}' failed "
            f"({outcome.step_error().message}), running fallback '{fallback.id}'"
        )
        # The fallback reads the same bindings the failed step could read.
        outcome = await self._execute_definition(
            fallback.definition, fallback.template, bindings, step_run
        )
        outcome.fallback_used = fallback.id
        return outcome

    # ------------------------------------------------------------------
    # Termination
    async def _shutdown(self) -> None:
        """Cancel in-flight steps and mark everything unfinished cancelled."""
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            done, pending = await asyncio.wait(
                tasks, timeout=self.settings.cancel_grace_seconds
            )
            for task in done:
                if not task.cancelled():
                    task.exception()  # result is discarded
            for task in pending:
                logger.warning(
                    f"Run {self.run.run_id}: task {task.get_name()} did not stop "
                    "in time, its result will be discarded"
                )
                task.add_done_callback(_discard_result)
        self._closed = True

        reason = "Run was cancelled" if self._abort is None else "Run aborted"
        for step_run in self.run.steps.values():
            if not step_run.status.is_terminal:
                error = None
                if step_run.status is StepStatus.RUNNING:
                    error = StepError(kind=ErrorKind.CANCELLED, message=reason)
                step_run.finish(StepStatus.CANCELLED, error=error)

    async def _finish(self) -> None:
        if self._abort is None and not self._cancel_requested.is_set():
            self._closed = True
            output, error = self._resolve_outputs()
            if error is None:
                self.run.output = output
                await self._transition(RunStatus.COMPLETED)
            else:
                await self._transition(RunStatus.FAILED, error)
            return

        running = [
            self._graph.step_ids[h]
            for h in sorted(self._tasks.values())
        ]
        await self._shutdown()
        if self._abort is not None:
            await self._transition(RunStatus.FAILED, self._abort)
        else:
            await self._transition(
                RunStatus.CANCELLED,
                RunError(
                    step_id=running[0] if running else None,
                    kind=ErrorKind.CANCELLED,
                    message="Run was cancelled",
                ),
            )

    def _resolve_outputs(self) -> Tuple[Dict[str, Any], Optional[RunError]]:
        bindings = Bindings(inputs=self.run.inputs, steps=self.run.steps)
        output: Dict[str, Any] = {}
        for key, template in self.workflow.outputs.items():
            try:
                output[key] = self.resolver.resolve_value(template, bindings)
            except TemplateError as exc:
                return output, RunError(
                    output_key=key, kind=ErrorKind.TEMPLATE_ERROR, message=str(exc)
                )
        return output, None

    async def _transition(self, status: RunStatus, error: Optional[RunError] = None) -> bool:
        """Single check-and-set into a terminal state."""
        async with self._transition_lock:
            if self.run.status.is_terminal:
                return False
            self.run.status = status
            self.run.error = error
            self.run.ended_at = utcnow()
        if error is None:
            logger.info(f"Run {self.run.run_id} {status.value}")
        else:
            logger.warning(
                f"Run {self.run.run_id} {status.value}: step={error.step_id} "
                f"kind={error.kind.value} {error.message}"
            )
        await self._notify()
        return True

    async def _notify(self) -> None:
        if self._on_update is None:
            return
        try:
            await self._on_update(self.run)
        except Exception:
            # Observer failures are logged and do not change the run's outcome.
            logger.exception(f"Run {self.run.run_id}: update observer failed")


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


def new_run(workflow: CompiledWorkflow, inputs: Dict[str, Any], trigger: str = "manual") -> WorkflowRun:
    """Create a pending run with one pending StepRun per scheduled step."""
    definition = workflow.definition
    steps: Dict[str, StepRun] = {}
    for handle in workflow.graph.scheduled:
        step = definition.steps[handle]
        steps[step.id] = StepRun(step_id=step.id, agent=step.agent)
    return WorkflowRun(
        workflow_id=workflow.workflow_id,
        workflow_version=definition.version,
        trigger=trigger,
        inputs=dict(inputs),
        steps=steps,
    )
