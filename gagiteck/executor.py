"""Agent executor boundary.

The orchestrator hands a resolved input string to an executor together with
an agent identifier and gets an output back. Executors are shared by every
run and must not keep per-call state.
"""

from __future__ import annotations

import abc
import inspect
import logging
import sys
from importlib import import_module
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Mapping, Optional

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError

from .errors import AgentExecutionError, ErrorKind

logger = logging.getLogger(__name__)


class BaseAgentExecutor(metaclass=abc.ABCMeta):
    """Contract for executing one agent call."""

    @abc.abstractmethod
    async def execute(
        self, agent_id: str, resolved_input: str, timeout: Optional[float] = None
    ) -> Any:
        """Run ``agent_id`` on ``resolved_input`` and return its output.

        Raises:
            AgentExecutionError: with a ``kind`` used by retry policies.
        """
        raise NotImplementedError


def _http_error_kind(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.AGENT_ERROR


def _extract_output(result: Any) -> Any:
    if hasattr(result, "output"):
        return result.output
    return result


class AgentRegistryExecutor(BaseAgentExecutor):
    """Dispatch calls to registered agents.

    An agent is a pydantic-ai :class:`Agent`, any object with an async
    ``run(prompt)`` method, or a plain (async) callable taking the prompt.
    """

    def __init__(self, agents: Optional[Mapping[str, Any]] = None) -> None:
        self._agents: Dict[str, Any] = dict(agents or {})

    @property
    def agent_ids(self) -> list[str]:
        return sorted(self._agents)

    def register(self, agent_id: str, agent: Any) -> None:
        self._agents[agent_id] = agent

    async def _invoke(self, agent: Any, prompt: str, timeout: Optional[float]) -> Any:
        if isinstance(agent, Agent):
            settings = {"timeout": timeout} if timeout else None
            return await agent.run(prompt, model_settings=settings)
        if hasattr(agent, "run"):
            result = agent.run(prompt)
        elif callable(agent):
            result = agent(prompt)
        else:
            raise TypeError(f"{type(agent).__name__} is not runnable")
        if inspect.isawaitable(result):
            result = await result
        return result

    async def execute(
        self, agent_id: str, resolved_input: str, timeout: Optional[float] = None
    ) -> Any:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentExecutionError(
                f"Agent '{agent_id}' is not registered",
                kind=ErrorKind.AGENT_NOT_FOUND,
                agent_id=agent_id,
            )
        try:
            result = await self._invoke(agent, resolved_input, timeout)
        except AgentExecutionError:
            raise
        except ModelHTTPError as exc:
            raise AgentExecutionError(
                f"Model call failed with HTTP {exc.status_code}",
                kind=_http_error_kind(exc.status_code),
                agent_id=agent_id,
            ) from exc
        except Exception as exc:
            raise AgentExecutionError(
                f"{type(exc).__name__}: {exc}", agent_id=agent_id
            ) from exc
        return _extract_output(result)


class EchoAgentExecutor(BaseAgentExecutor):
    """Return the resolved input prefixed with the agent id. For dry runs."""

    async def execute(
        self, agent_id: str, resolved_input: str, timeout: Optional[float] = None
    ) -> Any:
        return f"[{agent_id}] {resolved_input}"


def _load_module(target: str) -> ModuleType:
    path = Path(target)
    if path.suffix == ".py" and path.exists():
        module_name = f"gagiteck_agents_{path.stem}"
        spec = spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load agents from {path}")
        module = module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    return import_module(target)


def discover_agents(target: str) -> Dict[str, Agent]:
    """Collect pydantic-ai agents defined in a module or Python file.

    Agents are keyed by their ``name`` or, when unnamed, by the variable
    they are bound to.
    """
    module = _load_module(target)
    agents: Dict[str, Agent] = {}
    for attr, value in vars(module).items():
        if isinstance(value, Agent):
            agents[value.name or attr] = value
    logger.info(f"Discovered {len(agents)} agents in {target}: {sorted(agents)}")
    return agents
