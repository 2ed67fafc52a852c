"""
Test fixtures and utilities for stepflow tests.

This module provides reusable fixtures for registry and schema tests:
a complete, valid registry document for the "iterator" agent, the step
schemas it references, and helpers to write them under tmp_path.
"""

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from stepflow.config.runtime_config import reset_config  # noqa: E402

_ENV_VARS = (
    "STEPFLOW_AGENTS_DIR",
    "STEPFLOW_REGISTRY_FILENAME",
    "STEPFLOW_SCHEMAS_DIRNAME",
    "STEPFLOW_VALIDATE_INTENT_ENUMS",
    "STEPFLOW_LOG_COMMAND_CHARS",
)

AGENT_ID = "iterator"


# ============================================================================
# Runtime Config Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_runtime_config(monkeypatch):
    """Clear STEPFLOW_* env vars and the config cache around every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


# ============================================================================
# Document Builders
# ============================================================================


def _gated_step(
    step_id: str,
    kind: str,
    action: str,
    intents,
    transitions: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "stepId": step_id,
        "name": f"{action.title()} step for issues",
        "stepKind": kind,
        "domain": "steps",
        "action": action,
        "target": "issue",
        "edition": "default",
        "fallbackKey": f"{action}_issue",
        "uvVariables": ["issue"],
        "usesStdin": False,
        "outputSchemaRef": {
            "file": "issue.schema.json",
            "schema": f"#/definitions/{step_id}",
        },
        "structuredGate": {
            "allowedIntents": list(intents),
            "intentField": "next_action.action",
            "intentSchemaRef": "#/properties/next_action/properties/action",
        },
        "transitions": transitions,
    }


def build_registry_document() -> Dict[str, Any]:
    """A valid registry: work -> work -> verification -> closure, plus a section step."""
    initial = _gated_step(
        "initial.issue", "work", "initial", ["next", "repeat", "handoff"],
        {
            "next": {"target": "continuation.issue"},
            "repeat": {"target": "initial.issue"},
            "handoff": {"target": "closure.issue"},
        },
    )
    initial["structuredGate"]["targetField"] = "next_action.target"
    initial["structuredGate"]["handoffFields"] = ["summary"]

    continuation = _gated_step(
        "continuation.issue", "work", "continuation", ["next", "repeat", "handoff"],
        {
            "next": {"target": "verification.issue"},
            "repeat": {"target": "continuation.issue"},
            "handoff": {"target": "closure.issue"},
        },
    )
    verification = _gated_step(
        "verification.issue", "verification", "verification", ["next", "repeat", "escalate"],
        {
            "next": {"target": "closure.issue"},
            "repeat": {"target": "continuation.issue"},
            "escalate": {
                "condition": "severity",
                "targets": {"high": "closure.issue", "low": None},
            },
        },
    )
    verification["structuredGate"]["fallbackIntent"] = "repeat"
    closure = _gated_step(
        "closure.issue", "closure", "closure", ["closing", "repeat"],
        {
            "closing": {"target": None},
            "repeat": {"target": "closure.issue", "fallback": "continuation.issue"},
        },
    )
    closure["structuredGate"]["failFast"] = False

    section = {
        "stepId": "section.projectcontext",
        "name": "Project context section",
        "stepKind": "work",
        "domain": "steps",
        "action": "section",
        "target": "projectcontext",
        "edition": "default",
        "adaptation": "compact",
        "fallbackKey": "section_projectcontext",
        "uvVariables": [],
        "usesStdin": True,
        "description": "Injected ahead of every issue step",
    }

    steps = [initial, continuation, verification, closure, section]
    return {
        "agentId": AGENT_ID,
        "version": "1.0.0",
        "promptsBase": ".agent/iterator/prompts",
        "schemasBase": "schemas",
        "entryStep": "initial.issue",
        "entryStepMapping": {"issue": "initial.issue"},
        "flows": {
            "issue": [
                "initial.issue",
                "continuation.issue",
                "verification.issue",
                "closure.issue",
            ],
        },
        "steps": {step["stepId"]: step for step in steps},
    }


def _step_schema(step_id: str, intents) -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["stepId", "next_action"],
        "properties": {
            "stepId": {"type": "string", "const": step_id},
            "summary": {"$ref": "common.schema.json#/$defs/summary"},
            "next_action": {
                "allOf": [
                    {"$ref": "#/definitions/nextAction"},
                    {
                        "properties": {
                            "action": {"type": "string", "enum": list(intents)},
                        },
                    },
                ],
            },
        },
    }


def build_schema_documents() -> Dict[str, Dict[str, Any]]:
    """Step schemas matching build_registry_document's gates exactly."""
    common = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "$defs": {
            "summary": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "files": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["text"],
            },
        },
    }
    issue = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "definitions": {
            "nextAction": {
                "type": "object",
                "properties": {
                    "action": {"type": "string"},
                    "reason": {"type": "string"},
                },
                "required": ["action", "reason"],
            },
            "initial.issue": _step_schema("initial.issue", ["next", "repeat", "handoff"]),
            "continuation.issue": _step_schema("continuation.issue", ["next", "repeat", "handoff"]),
            "verification.issue": _step_schema(
                "verification.issue", ["next", "repeat", "escalate"]
            ),
            "closure.issue": _step_schema("closure.issue", ["closing", "repeat"]),
        },
    }
    return {"common.schema.json": common, "issue.schema.json": issue}


def write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def registry_document() -> Dict[str, Any]:
    """A fresh, valid registry document (safe to mutate)."""
    return copy.deepcopy(build_registry_document())


@pytest.fixture
def schema_documents() -> Dict[str, Dict[str, Any]]:
    return copy.deepcopy(build_schema_documents())


@pytest.fixture
def agents_dir(tmp_path, registry_document, schema_documents) -> Path:
    """
    Create a temporary agents directory with:
    - iterator/registry.json
    - iterator/schemas/issue.schema.json
    - iterator/schemas/common.schema.json
    """
    agents = tmp_path / "agents"
    write_json(agents / AGENT_ID / "registry.json", registry_document)
    for name, schema in schema_documents.items():
        write_json(agents / AGENT_ID / "schemas" / name, schema)
    return agents


@pytest.fixture
def schemas_dir(agents_dir) -> Path:
    return agents_dir / AGENT_ID / "schemas"


@pytest.fixture
def registry(registry_document):
    """The parsed StepRegistry of registry_document."""
    from stepflow.registry.types import registry_from_dict

    return registry_from_dict(registry_document)
