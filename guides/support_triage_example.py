"""Run the support triage workflow once with local agents."""

import asyncio
import json
from pathlib import Path

from gagiteck import (
    AgentRegistryExecutor,
    GagiteckConfig,
    Orchestrator,
    discover_agents,
    get_repository,
)

HERE = Path(__file__).parent


async def main():
    agents = discover_agents(str(HERE / "support_agents.py"))
    orchestrator = Orchestrator(
        AgentRegistryExecutor(agents),
        repository=get_repository(),
        config=GagiteckConfig(),
    )
    workflow_id = orchestrator.register_workflow(HERE / "support_triage.yaml")

    run = await orchestrator.run_workflow(
        workflow_id,
        {
            "ticket": "I was charged twice this month",
            "customer": {"name": "Ada", "email": "ADA@example.com"},
            "priority": "urgent",
        },
    )
    print(f"Run {run.run_id}: {run.status.value}")
    for step in run.steps.values():
        print(f"- {step.step_id}: {step.status.value} (attempts={step.attempts})")
    print(json.dumps(run.output, indent=2, default=str))


if __name__ == "__main__":
    asyncio.run(main())
