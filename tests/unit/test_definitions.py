"""Tests for workflow definition parsing and input binding."""

import pytest

from gagiteck.definitions import (
    OnError,
    ParamType,
    TriggerType,
    parse_workflow,
    workflow_from_mapping,
)
from gagiteck.errors import ErrorKind, InvalidWorkflowError, ValidationError

WORKFLOW_YAML = """
name: digest
version: 2.0.0
trigger: manual
inputs:
  topic:
    type: string
    required: true
  limit:
    type: integer
    default: 5
  tags: array
steps:
  - id: fetch
    agent: fetcher
    input: "Fetch {{ inputs.limit }} items about {{ inputs.topic }}"
    retry:
      max_attempts: 4
      retry_on: [timeout, rate-limit]
  - id: summarize
    agent: writer
    depends_on: fetch
    input: "{{ steps.fetch.output }}"
    timeout_ms: 1500
    on_error: skip
output:
  summary: "{{ steps.summarize.output }}"
"""


def test_parse_workflow_from_yaml():
    definition = parse_workflow(WORKFLOW_YAML)

    assert definition.workflow_id == "digest"
    assert definition.version == "2.0.0"
    assert definition.trigger.type is TriggerType.MANUAL
    assert definition.inputs["tags"].type is ParamType.ARRAY
    assert definition.inputs["limit"].default == 5

    fetch = definition.step("fetch")
    assert fetch.retry.max_attempts == 4
    assert fetch.retry.retry_on == (ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT)

    summarize = definition.step("summarize")
    assert summarize.depends_on == ("fetch",)
    assert summarize.on_error is OnError.SKIP
    assert summarize.timeout_seconds == 1.5


def test_inputs_accept_list_form():
    definition = workflow_from_mapping(
        {
            "name": "listed",
            "inputs": [{"name": "city", "type": "string", "required": True}],
            "steps": [{"id": "a", "agent": "x"}],
        }
    )
    assert definition.inputs["city"].required is True


def test_event_trigger_requires_event_name():
    with pytest.raises(InvalidWorkflowError):
        workflow_from_mapping(
            {"name": "w", "trigger": {"type": "event"}, "steps": [{"id": "a", "agent": "x"}]}
        )


def test_unknown_fields_are_rejected():
    with pytest.raises(InvalidWorkflowError):
        workflow_from_mapping(
            {"name": "w", "steps": [{"id": "a", "agent": "x", "retries": 3}]}
        )


def test_workflow_without_steps_is_rejected():
    with pytest.raises(InvalidWorkflowError):
        workflow_from_mapping({"name": "w", "steps": []})


def test_invalid_yaml_is_reported():
    with pytest.raises(InvalidWorkflowError, match="invalid YAML"):
        parse_workflow("name: [unclosed")


def test_definitions_are_immutable():
    definition = parse_workflow(WORKFLOW_YAML)
    with pytest.raises(Exception):
        definition.name = "other"


def test_bind_inputs_applies_defaults():
    definition = parse_workflow(WORKFLOW_YAML)
    bound = definition.bind_inputs({"topic": "rust"})
    assert bound == {"topic": "rust", "limit": 5, "tags": None}


def test_bind_inputs_lists_every_problem():
    definition = parse_workflow(WORKFLOW_YAML)
    with pytest.raises(ValidationError) as excinfo:
        definition.bind_inputs({"limit": "ten", "extra": 1})

    problems = excinfo.value.problems
    assert "unknown input 'extra'" in problems
    assert "missing required input 'topic'" in problems
    assert any("'limit' must be of type integer" in p for p in problems)
    assert excinfo.value.workflow_id == "digest"


def test_booleans_are_not_numbers():
    definition = workflow_from_mapping(
        {
            "name": "w",
            "inputs": {"count": "number"},
            "steps": [{"id": "a", "agent": "x"}],
        }
    )
    with pytest.raises(ValidationError):
        definition.bind_inputs({"count": True})
    assert definition.bind_inputs({"count": 2.5}) == {"count": 2.5}


def test_input_defaults_must_match_their_type():
    with pytest.raises(InvalidWorkflowError, match="default must be of type integer"):
        workflow_from_mapping(
            {
                "name": "w",
                "inputs": {"limit": {"type": "integer", "default": "ten"}},
                "steps": [{"id": "a", "agent": "x"}],
            }
        )


def test_mutable_defaults_are_copied_per_binding():
    definition = workflow_from_mapping(
        {
            "name": "w",
            "inputs": {"tags": {"type": "array", "default": ["a"]}},
            "steps": [{"id": "a", "agent": "x"}],
        }
    )
    first = definition.bind_inputs({})
    first["tags"].append("b")
    assert definition.bind_inputs({}) == {"tags": ["a"]}
    assert definition.inputs["tags"].default == ["a"]
