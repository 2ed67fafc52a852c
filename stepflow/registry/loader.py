"""
loader.py - Load and validate step registries from JSON documents.

The conventional location is ``<agents_dir>/<agent_id>/registry.json``, with
``agents_dir`` and the filename taken from the runtime config.

Usage:
    from stepflow.registry.loader import load_step_registry, RegistryLoaderOptions

    registry = load_step_registry("iterator")
    registry = load_step_registry(
        "iterator",
        options=RegistryLoaderOptions(validate_schema=True, validate_intent_enums=True),
    )
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from stepflow.config.runtime_config import (
    get_agents_dir,
    get_registry_filename,
    get_schemas_dirname,
    should_validate_intent_enums,
)

from .errors import RegistryFormatError, RegistryMismatchError, RegistryNotFoundError
from .types import StepRegistry, registry_from_dict
from .validator import (
    validate_entry_points,
    validate_intent_schema_enums,
    validate_intent_schema_ref,
    validate_registry_document,
    validate_step_kind_intents,
    validate_step_registry,
)

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("agentId", "version", "steps")


@dataclass
class RegistryLoaderOptions:
    """Options for load_step_registry.

    Attributes:
        registry_path: Explicit registry file; overrides the conventional path.
        validate_schema: Also run the structural check (validate_step_registry).
        validate_document: Check the raw document against registry.schema.json.
        validate_intent_enums: Cross-check gate intents against schema enums.
            None defers to the runtime config.
        schemas_dir: Schema directory for the enum check. Defaults to
            ``schemasBase`` (or the configured dirname) beside the registry file.
    """
    registry_path: Optional[Union[str, Path]] = None
    validate_schema: bool = False
    validate_document: bool = False
    validate_intent_enums: Optional[bool] = None
    schemas_dir: Optional[Union[str, Path]] = None


def get_registry_path(agent_id: str, agents_dir: Optional[Union[str, Path]] = None) -> Path:
    """Get the conventional registry path for an agent."""
    base = Path(agents_dir) if agents_dir is not None else get_agents_dir()
    return base / agent_id / get_registry_filename()


def get_schemas_dir(registry: StepRegistry, registry_path: Union[str, Path]) -> Path:
    """Get the schema directory for a registry loaded from ``registry_path``."""
    return Path(registry_path).parent / (registry.schemas_base or get_schemas_dirname())


def read_registry_document(registry_path: Union[str, Path]) -> Any:
    """Read and decode a registry document without interpreting it.

    Raises:
        RegistryNotFoundError: If the file does not exist.
        RegistryFormatError: If the file is not valid JSON.
    """
    registry_path = Path(registry_path)
    if not registry_path.is_file():
        raise RegistryNotFoundError(str(registry_path))

    try:
        with open(registry_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise RegistryFormatError(f"Invalid JSON in step registry {registry_path}: {e}") from e


def parse_step_registry(data: Any, agent_id: Optional[str] = None) -> StepRegistry:
    """Build a StepRegistry from a parsed document.

    Args:
        data: The decoded JSON document.
        agent_id: Expected agent id; checked when given.

    Raises:
        RegistryFormatError: If required top-level fields are missing.
        RegistryMismatchError: If the document belongs to another agent.
    """
    if not isinstance(data, dict) or not all(data.get(key) for key in _REQUIRED_KEYS):
        raise RegistryFormatError(
            "Invalid registry format: missing required fields (agentId, version, steps)"
        )

    if agent_id is not None and data["agentId"] != agent_id:
        raise RegistryMismatchError(agent_id, data["agentId"])

    return registry_from_dict(data)


def load_step_registry(
    agent_id: str,
    agents_dir: Optional[Union[str, Path]] = None,
    options: Optional[RegistryLoaderOptions] = None,
) -> StepRegistry:
    """Load a step registry and run its load-time checks.

    The step kind, entry point and intentSchemaRef checks always run; the
    structural, document and enum checks run when requested.

    Args:
        agent_id: Agent identifier; must equal the document's agentId.
        agents_dir: Base directory of agent folders (default from config).
        options: Loader options.

    Returns:
        The loaded registry.

    Raises:
        RegistryNotFoundError: If the registry file does not exist.
        RegistryFormatError: If the file is not valid JSON or lacks required fields.
        RegistryMismatchError: If the document's agentId differs from agent_id.
        RegistryValidationError: If any enabled check fails.
    """
    options = options or RegistryLoaderOptions()
    registry_path = (
        Path(options.registry_path)
        if options.registry_path is not None
        else get_registry_path(agent_id, agents_dir)
    )

    data = read_registry_document(registry_path)

    if options.validate_document:
        validate_registry_document(data)

    registry = parse_step_registry(data, agent_id)

    validate_step_kind_intents(registry)
    validate_entry_points(registry)
    validate_intent_schema_ref(registry)

    validate_enums = options.validate_intent_enums
    if validate_enums is None:
        validate_enums = should_validate_intent_enums()
    if validate_enums:
        schemas_dir = (
            Path(options.schemas_dir)
            if options.schemas_dir is not None
            else get_schemas_dir(registry, registry_path)
        )
        validate_intent_schema_enums(registry, schemas_dir)

    if options.validate_schema:
        result = validate_step_registry(registry)
        for warning in result.warnings:
            logger.warning("%s %s", warning.location, warning.problem)

    logger.info(
        "Loaded step registry '%s' v%s (%d steps, %d flows) from %s",
        registry.agent_id,
        registry.version,
        len(registry.steps),
        len(registry.flows),
        registry_path,
    )
    return registry
