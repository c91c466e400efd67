"""Command line interface for Gagiteck workflows."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from gagiteck import (
    EchoAgentExecutor,
    AgentRegistryExecutor,
    Orchestrator,
    discover_agents,
    get_repository,
    get_trigger_source,
    load_config,
)
from gagiteck.cli_utils.fs import _format_path, _iter_workflow_files
from gagiteck.definitions import load_workflow
from gagiteck.errors import GagiteckError
from gagiteck.executor import BaseAgentExecutor
from gagiteck.models import RunStatus, WorkflowRun
from gagiteck.triggers import TriggerDispatcher, TriggerEvent
from gagiteck.utils.log import configure_logging
from gagiteck.workflow import compile_workflow

app = typer.Typer(help="CLI for Gagiteck workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for validating and running workflows")
run_app = typer.Typer(help="Commands for inspecting recorded runs")
trigger_app = typer.Typer(help="Commands for trigger events")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(trigger_app, name="trigger")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Log level (defaults to the configured log_level)"
    ),
) -> None:
    """Gagiteck CLI entry point."""
    configure_logging(log_level or load_config().log_level)


def _parse_json_object(raw: Optional[str], option: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _build_executor(agents: Optional[str], echo: bool) -> BaseAgentExecutor:
    if echo:
        return EchoAgentExecutor()
    if not agents:
        typer.secho("Provide --agents MODULE or --echo", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return AgentRegistryExecutor(discover_agents(agents))
    except (ImportError, OSError) as exc:
        typer.secho(f"Could not load agents from {agents}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_run(run: WorkflowRun) -> None:
    typer.echo(f"Run {run.run_id}: {run.status.value}")
    for step in run.steps.values():
        line = f"- {step.step_id}: {step.status.value}"
        if step.attempts:
            line += f" (attempts={step.attempts})"
        if step.fallback_used:
            line += f" [fallback={step.fallback_used}]"
        if step.skip_reason:
            line += f" [{step.skip_reason}]"
        if step.error:
            line += f" {step.error.kind.value}: {step.error.message}"
        typer.echo(line)
    if run.error:
        typer.echo(f"Error: {run.error.kind.value}: {run.error.message}")
    if run.output is not None:
        typer.echo(f"Output: {json.dumps(run.output, default=str)}")


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Validate a workflow file and print its execution order.

    Example:
        gagiteck workflow validate ./workflows/support_triage.yaml
        # Output: Workflow 'support_triage' v1.0.0 is valid
        #         Execution order: classify -> route -> respond
    """
    try:
        compiled = compile_workflow(load_workflow(path))
    except OSError as exc:
        typer.secho(f"Cannot read {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except GagiteckError as exc:
        typer.secho(f"Invalid workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    definition = compiled.definition
    typer.echo(f"Workflow '{definition.name}' v{definition.version} is valid")
    typer.echo(f"Execution order: {' -> '.join(compiled.graph.topological_order())}")


@workflow_app.command("discover")
def workflow_discover(
    path: Optional[Path] = None,
    respect_gitignore: bool = typer.Option(
        True, help="Skip files and directories specified in .gitignore files"
    ),
) -> None:
    """Find YAML files that parse as workflow definitions."""
    search_path = (path or Path.cwd()).expanduser().resolve()
    typer.echo(f"Discovering workflows in: {search_path}")

    if not search_path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    found = 0
    for candidate in _iter_workflow_files(search_path, respect_gitignore=respect_gitignore):
        try:
            definition = load_workflow(candidate)
        except GagiteckError:
            continue
        except OSError as exc:
            typer.secho(f"Skipping {candidate}: {exc}", fg=typer.colors.RED)
            continue
        found += 1
        description = definition.description or "No description found"
        typer.echo(f"{_format_path(candidate, search_path)} - {definition.name}: {description}")
        typer.echo(f"  Trigger: {definition.trigger.type.value}")
        typer.echo(f"  Agents: {', '.join(sorted({s.agent for s in definition.steps}))}")

    if not found:
        typer.echo("No workflows discovered.")


@workflow_app.command("run")
def workflow_run(
    path: Path,
    input_json: Optional[str] = typer.Option(None, "--input", help="JSON object of workflow inputs"),
    agents: Optional[str] = typer.Option(
        None, help="Module or .py file defining pydantic-ai agents"
    ),
    echo: bool = typer.Option(False, help="Echo resolved inputs instead of calling agents"),
    timeout: Optional[float] = typer.Option(None, help="Seconds to wait for the run"),
) -> None:
    """
    Run a workflow once and print step statuses and the output.

    Example:
        gagiteck workflow run ./support_triage.yaml --input '{"ticket": "..."}' --echo
    """
    payload = _parse_json_object(input_json, "--input")
    executor = _build_executor(agents, echo)

    async def _run() -> WorkflowRun:
        orchestrator = Orchestrator(executor, repository=get_repository())
        workflow_id = orchestrator.register_workflow(path)
        return await orchestrator.run_workflow(workflow_id, payload, timeout=timeout)

    try:
        run = asyncio.run(_run())
    except asyncio.TimeoutError:
        typer.secho(f"Run did not finish within {timeout:g}s", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except OSError as exc:
        typer.secho(f"Cannot read {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except GagiteckError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    _echo_run(run)
    if run.status is not RunStatus.COMPLETED:
        raise typer.Exit(code=1)


@run_app.command("list")
def run_list(workflow: Optional[str] = typer.Option(None, help="Only runs of this workflow")) -> None:
    """
    List recorded runs with their status.

    Example:
        gagiteck run list
        # Output: 3f0c...    support_triage    completed
    """
    repo = get_repository()
    runs = asyncio.run(repo.list_runs(workflow))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.workflow_id}\t{run.status.value}")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """Show the step-by-step state of a recorded run."""
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {run.workflow_id} v{run.workflow_version} (trigger={run.trigger})")
    if run.inputs:
        typer.echo(f"Inputs: {json.dumps(run.inputs, default=str)}")
    _echo_run(run)


@trigger_app.command("listen")
def trigger_listen(
    workflow_dir: Path,
    agents: Optional[str] = typer.Option(
        None, help="Module or .py file defining pydantic-ai agents"
    ),
    echo: bool = typer.Option(False, help="Echo resolved inputs instead of calling agents"),
    lifespan: Optional[float] = typer.Option(
        None, help="Seconds to listen (default: run indefinitely)"
    ),
    respect_gitignore: bool = typer.Option(True),
) -> None:
    """Register the workflows in a directory and start runs for trigger events."""
    executor = _build_executor(agents, echo)
    config = load_config()

    async def _serve() -> None:
        orchestrator = Orchestrator(executor, repository=get_repository(), config=config)
        for candidate in _iter_workflow_files(workflow_dir, respect_gitignore=respect_gitignore):
            try:
                workflow_id = orchestrator.register_workflow(candidate)
            except GagiteckError as exc:
                typer.secho(f"Skipping {candidate}: {exc}", fg=typer.colors.RED)
                continue
            typer.echo(f"Registered {workflow_id}")

        source = get_trigger_source(config=config)
        dispatcher = TriggerDispatcher(orchestrator, source, topic=config.triggers.topic)
        try:
            await dispatcher.serve(lifespan=lifespan)
        finally:
            await orchestrator.shutdown()
            await source.disconnect()

    typer.echo(f"Listening for triggers on {config.triggers.topic}")
    asyncio.run(_serve())


@trigger_app.command("send")
def trigger_send(
    workflow_id: Optional[str] = typer.Argument(None),
    payload: Optional[str] = typer.Option(None, help="JSON object passed as run input"),
    event: Optional[str] = typer.Option(None, help="Event name instead of a workflow id"),
) -> None:
    """Publish a trigger event for a workflow id or an event name."""
    if not workflow_id and not event:
        typer.secho("Provide a WORKFLOW_ID or --event", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    data = _parse_json_object(payload, "--payload")
    config = load_config()
    trigger_event = TriggerEvent(workflow_id=workflow_id, event=event, payload=data)

    async def _send() -> None:
        source = get_trigger_source(config=config)
        try:
            await source.publish(config.triggers.topic, trigger_event)
        finally:
            await source.disconnect()

    asyncio.run(_send())
    typer.echo(f"Published trigger event {trigger_event.event_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
