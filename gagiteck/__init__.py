"""Gagiteck: DAG workflow orchestration for AI agents."""

from .config import GagiteckConfig, load_config
from .definitions import (
    RetryPolicy,
    StepDefinition,
    WorkflowDefinition,
    load_workflow,
    parse_workflow,
)
from .executor import (
    AgentRegistryExecutor,
    BaseAgentExecutor,
    EchoAgentExecutor,
    discover_agents,
)
from .models import RunStatus, StepRun, StepStatus, WorkflowRun
from .orchestrator import Orchestrator
from .persistence import get_repository
from .templating import ResolverContext, TemplateResolver
from .triggers import TriggerDispatcher, TriggerEvent, get_trigger_source

__version__ = "0.1.0"
__all__ = [
    "AgentRegistryExecutor",
    "BaseAgentExecutor",
    "EchoAgentExecutor",
    "GagiteckConfig",
    "Orchestrator",
    "ResolverContext",
    "RetryPolicy",
    "RunStatus",
    "StepDefinition",
    "StepRun",
    "StepStatus",
    "TemplateResolver",
    "TriggerDispatcher",
    "TriggerEvent",
    "WorkflowDefinition",
    "WorkflowRun",
    "discover_agents",
    "get_repository",
    "get_trigger_source",
    "load_config",
    "load_workflow",
    "parse_workflow",
]
