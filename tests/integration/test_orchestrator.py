"""Orchestrator API: registration, run lifecycle, cancellation, persistence."""

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from gagiteck.config import GagiteckConfig, OrchestratorConfig
from gagiteck.errors import (
    CyclicDependencyError,
    ErrorKind,
    InvalidWorkflowError,
    RunNotFoundError,
    TemplateError,
    ValidationError,
    WorkflowNotFoundError,
)
from gagiteck.executor import AgentRegistryExecutor, EchoAgentExecutor, discover_agents
from gagiteck.models import RunStatus, StepStatus
from gagiteck.orchestrator import Orchestrator
from gagiteck.persistence import InMemoryRunRepository, SQLiteRunRepository
from gagiteck.scheduler import RunScheduler

GUIDES = Path(__file__).resolve().parents[2] / "guides"

GREETING = {
    "name": "greeting",
    "version": "1.1.0",
    "trigger": {"type": "event", "event": "user.signed_up"},
    "inputs": {"user": {"type": "string", "required": True}},
    "steps": [
        {"id": "greet", "agent": "writer", "input": "Welcome {{ inputs.user }}"},
        {"id": "log", "agent": "writer", "depends_on": ["greet"], "input": "{{ steps.greet.output }}"},
    ],
    "output": {"message": "{{ steps.greet.output }}"},
}


class BlockingAgent:
    """Signals when it starts and then waits until cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def run(self, prompt: str):
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return SimpleNamespace(output="late")


class CountingAgent:
    def __init__(self):
        self.active = 0
        self.max_active = 0

    async def run(self, prompt: str):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.05)
        self.active -= 1
        return SimpleNamespace(output=prompt.upper())


def _config(**settings):
    settings.setdefault("cancel_grace_seconds", 1.0)
    return GagiteckConfig(orchestrator=OrchestratorConfig(**settings))


def _orchestrator(executor=None, **kwargs):
    return Orchestrator(executor or EchoAgentExecutor(), config=_config(), **kwargs)


def test_register_workflow_and_lookup():
    orchestrator = _orchestrator()
    workflow_id = orchestrator.register_workflow(GREETING)

    assert workflow_id == "greeting"
    assert orchestrator.get_workflow("greeting").version == "1.1.0"
    assert [w.name for w in orchestrator.list_workflows()] == ["greeting"]
    assert orchestrator.workflows_for_event("user.signed_up") == ["greeting"]
    assert orchestrator.workflows_for_event("other") == []
    with pytest.raises(WorkflowNotFoundError):
        orchestrator.get_workflow("missing")


def test_register_from_yaml_file():
    orchestrator = _orchestrator()
    assert orchestrator.register_workflow(GUIDES / "support_triage.yaml") == "support_triage"


@pytest.mark.parametrize(
    "steps, error",
    [
        (
            [
                {"id": "a", "agent": "x", "depends_on": ["b"]},
                {"id": "b", "agent": "x", "depends_on": ["a"]},
            ],
            CyclicDependencyError,
        ),
        ([{"id": "a", "agent": "x", "input": "{{ inputs.x"}], TemplateError),
        ([{"id": "a", "agent": "x", "condition": "open('f')"}], InvalidWorkflowError),
    ],
)
def test_invalid_workflows_are_not_registered(steps, error):
    orchestrator = _orchestrator()
    with pytest.raises(error):
        orchestrator.register_workflow({"name": "broken", "steps": steps})
    assert orchestrator.list_workflows() == []


@pytest.mark.asyncio
async def test_start_run_returns_immediately_and_get_run_tracks_progress():
    orchestrator = _orchestrator()
    orchestrator.register_workflow(GREETING)

    run_id = await orchestrator.start_run("greeting", {"user": "Ada"})
    early = await orchestrator.get_run(run_id)
    assert early.status in (RunStatus.PENDING, RunStatus.RUNNING)
    assert early.workflow_version == "1.1.0"

    run = await orchestrator.wait_for_run(run_id, timeout=5)
    assert run.status is RunStatus.COMPLETED
    assert run.output == {"message": "[writer] Welcome Ada"}
    assert run.steps["log"].output == "[writer] [writer] Welcome Ada"
    assert run.started_at <= run.ended_at


@pytest.mark.asyncio
async def test_get_run_returns_isolated_snapshots():
    orchestrator = _orchestrator()
    orchestrator.register_workflow(GREETING)
    run = await orchestrator.run_workflow("greeting", {"user": "Ada"}, timeout=5)

    run.steps["greet"].output = "tampered"
    run.status = RunStatus.FAILED
    fresh = await orchestrator.get_run(run.run_id)
    assert fresh.status is RunStatus.COMPLETED
    assert fresh.steps["greet"].output == "[writer] Welcome Ada"


@pytest.mark.asyncio
async def test_start_run_validation_errors():
    orchestrator = _orchestrator()
    orchestrator.register_workflow(GREETING)

    with pytest.raises(WorkflowNotFoundError):
        await orchestrator.start_run("missing", {})
    with pytest.raises(ValidationError) as excinfo:
        await orchestrator.start_run("greeting", {"user": 3, "extra": True})
    assert len(excinfo.value.problems) == 2
    assert await orchestrator.list_runs() == []
    with pytest.raises(RunNotFoundError):
        await orchestrator.get_run("nope")


@pytest.mark.asyncio
async def test_cancel_run_stops_running_steps():
    blocking = BlockingAgent()
    orchestrator = _orchestrator(AgentRegistryExecutor({"slow": blocking, "after": blocking}))
    orchestrator.register_workflow(
        {
            "name": "cancellable",
            "steps": [
                {"id": "wait", "agent": "slow"},
                {"id": "after", "agent": "after", "depends_on": ["wait"]},
            ],
        }
    )

    run_id = await orchestrator.start_run("cancellable")
    await asyncio.wait_for(blocking.started.wait(), timeout=5)
    assert await orchestrator.cancel_run(run_id) is True

    run = await orchestrator.wait_for_run(run_id, timeout=5)
    assert run.status is RunStatus.CANCELLED
    assert run.error.kind is ErrorKind.CANCELLED
    assert run.error.step_id == "wait"
    assert run.steps["wait"].status is StepStatus.CANCELLED
    assert run.steps["wait"].error.kind is ErrorKind.CANCELLED
    assert run.steps["after"].status is StepStatus.CANCELLED
    assert blocking.cancelled

    assert await orchestrator.cancel_run(run_id) is False
    with pytest.raises(RunNotFoundError):
        await orchestrator.cancel_run("unknown")


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_state():
    counting = CountingAgent()
    orchestrator = _orchestrator(AgentRegistryExecutor({"writer": counting}))
    orchestrator.register_workflow(GREETING)

    users = [f"user{i}" for i in range(5)]
    run_ids = [await orchestrator.start_run("greeting", {"user": u}) for u in users]
    runs = await asyncio.gather(*(orchestrator.wait_for_run(r, timeout=5) for r in run_ids))

    assert len(set(run_ids)) == 5
    assert counting.max_active > 1
    for user, run in zip(users, runs):
        assert run.status is RunStatus.COMPLETED
        assert run.inputs == {"user": user}
        assert run.output == {"message": f"WELCOME {user.upper()}"}
    assert len(await orchestrator.list_runs("greeting")) == 5


@pytest.mark.asyncio
async def test_runs_are_persisted_to_the_repository(tmp_path):
    repo = SQLiteRunRepository(tmp_path / "runs.db")
    orchestrator = _orchestrator(repository=repo)
    orchestrator.register_workflow(GREETING)
    run = await orchestrator.run_workflow("greeting", {"user": "Ada"}, timeout=5)

    stored = await repo.get_run(run.run_id)
    assert stored.status is RunStatus.COMPLETED
    assert stored.steps["greet"].status is StepStatus.SUCCEEDED

    restarted = _orchestrator(repository=SQLiteRunRepository(tmp_path / "runs.db"))
    recovered = await restarted.get_run(run.run_id)
    assert recovered.output == run.output
    assert [r.run_id for r in await restarted.list_runs()] == [run.run_id]


@pytest.mark.asyncio
async def test_shutdown_cancels_active_runs():
    blocking = BlockingAgent()
    orchestrator = _orchestrator(AgentRegistryExecutor({"slow": blocking}))
    orchestrator.register_workflow({"name": "long", "steps": [{"id": "wait", "agent": "slow"}]})

    run_id = await orchestrator.start_run("long")
    await asyncio.wait_for(blocking.started.wait(), timeout=5)
    await orchestrator.shutdown()

    assert (await orchestrator.get_run(run_id)).status is RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_support_triage_guide_with_pydantic_ai_agents():
    agents = discover_agents(str(GUIDES / "support_agents.py"))
    orchestrator = _orchestrator(AgentRegistryExecutor(agents))
    orchestrator.register_workflow(GUIDES / "support_triage.yaml")

    run = await orchestrator.run_workflow(
        "support_triage",
        {
            "ticket": "Charged twice",
            "customer": {"name": "Ada", "email": "ada@example.com"},
            "priority": "urgent",
        },
        timeout=10,
    )

    assert run.status is RunStatus.COMPLETED
    assert run.steps["escalate"].status is StepStatus.SUCCEEDED
    assert run.output["escalated"] == "succeeded"
    assert set(run.steps) == {"classify", "lookup_account", "draft_reply", "escalate"}


@pytest.mark.asyncio
async def test_finished_runs_are_released_once_persisted():
    repo = InMemoryRunRepository()
    orchestrator = _orchestrator(repository=repo)
    orchestrator.register_workflow(GREETING)

    runs = [
        await orchestrator.run_workflow("greeting", {"user": f"user{i}"}, timeout=5)
        for i in range(20)
    ]

    assert orchestrator._runs == {}
    assert orchestrator._tasks == {}
    assert len(await orchestrator.list_runs("greeting")) == 20
    recovered = await orchestrator.get_run(runs[0].run_id)
    assert recovered.status is RunStatus.COMPLETED
    assert recovered.output == runs[0].output
    assert await orchestrator.cancel_run(runs[0].run_id) is False


@pytest.mark.asyncio
async def test_runs_without_repository_stay_inspectable():
    orchestrator = _orchestrator()
    orchestrator.register_workflow(GREETING)
    run = await orchestrator.run_workflow("greeting", {"user": "Ada"}, timeout=5)

    assert orchestrator._tasks == {}
    assert (await orchestrator.get_run(run.run_id)).status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_scheduler_crash_fails_the_run(monkeypatch):
    async def explode(self, handle):
        raise RuntimeError("readiness bookkeeping broke")

    monkeypatch.setattr(RunScheduler, "_evaluate_ready", explode)
    orchestrator = _orchestrator()
    orchestrator.register_workflow(GREETING)

    run = await orchestrator.run_workflow("greeting", {"user": "Ada"}, timeout=5)

    assert run.status is RunStatus.FAILED
    assert run.error.kind is ErrorKind.INTERNAL_ERROR
    assert "readiness bookkeeping broke" in run.error.message
    assert all(step.status is StepStatus.CANCELLED for step in run.steps.values())
    assert run.ended_at is not None
