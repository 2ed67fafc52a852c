"""
validator.py - Load-time and CI-time checks over a StepRegistry.

Each validator collects every finding into a ValidationResult before deciding
to fail, then raises a single RegistryValidationError listing them all, so an
author sees every problem in one pass.

Fail-fast checks (always run by the loader):
    validate_step_kind_intents   gate intents vs. the step kind's intent table
    validate_entry_points        entryStep / entryStepMapping / flows
    validate_intent_schema_ref   gate references its own output schema

Optional checks:
    validate_step_registry       required fields, key/stepId agreement
    validate_intent_schema_enums gate intents == schema enum (symmetric)
    validate_registry_document   raw document vs. registry.schema.json

Non-raising:
    validate_flow_references     dangling flow step ids (warnings)
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from jsonschema import Draft7Validator

from stepflow.runtime.schema_resolver import (
    SchemaResolutionError,
    SchemaResolver,
    get_pointer_value,
)

from .errors import RegistryValidationError
from .findings import ValidationResult
from .step_registry import infer_step_kind
from .types import STEP_KIND_ALLOWED_INTENTS, TARGET_MODES, StepKind, StepRegistry

logger = logging.getLogger(__name__)

DOCUMENT_SCHEMA_PATH = Path(__file__).parent / "schemas" / "registry.schema.json"

_KIND_NAMES = ", ".join(kind.value for kind in StepKind)

# Required string fields of a step definition: (attribute, JSON key)
_REQUIRED_STEP_STRINGS = (
    ("name", "name"),
    ("domain", "domain"),
    ("action", "action"),
    ("target", "target"),
    ("edition", "edition"),
    ("fallback_key", "fallbackKey"),
)


def _location(registry: StepRegistry, *parts: str) -> str:
    return f"{registry.agent_id or '?'}:" + ".".join(parts)


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _raise_if_errors(title: str, result: ValidationResult) -> ValidationResult:
    if result.has_errors():
        logger.debug("%s: %d error(s)", title, len(result.errors))
        raise RegistryValidationError(title, result.messages(), result)
    return result


# =============================================================================
# Structural validation
# =============================================================================


def validate_flow_references(registry: StepRegistry) -> ValidationResult:
    """Report flow entries that name unregistered steps.

    Never raises: flow traversal skips these ids, so they are warnings.
    """
    result = ValidationResult()
    for flow_name, step_ids in registry.flows.items():
        for step_id in step_ids:
            if step_id not in registry.steps:
                result.warning(
                    "FLOW",
                    _location(registry, "flows", flow_name),
                    f'flow "{flow_name}" references unregistered step "{step_id}"',
                    f'Register step "{step_id}" or remove it from the flow',
                )
    return result


def validate_step_registry(registry: StepRegistry) -> ValidationResult:
    """Check every required field of the registry and its steps.

    Raises only for missing or malformed required fields and for step keys
    that disagree with their definition's stepId. Dangling flow and entry
    references are returned as warnings.

    Returns:
        The ValidationResult (warnings only) when the registry passes.

    Raises:
        RegistryValidationError: With every structural error found.
    """
    result = ValidationResult()

    if not _non_empty_string(registry.agent_id):
        result.error(
            "STRUCTURE", _location(registry, "agentId"),
            "agentId must be a non-empty string",
            "Set agentId to the agent's identifier",
        )
    if not _non_empty_string(registry.version):
        result.error(
            "STRUCTURE", _location(registry, "version"),
            "version must be a non-empty string",
            'Set version, e.g. "1.0.0"',
        )
    if not isinstance(registry.steps, dict):
        result.error(
            "STRUCTURE", _location(registry, "steps"),
            "steps must be an object",
            "Define steps as a map of stepId -> step definition",
        )
        return _raise_if_errors("Registry validation failed", result)

    for key, step in registry.steps.items():
        location = _location(registry, "steps", key)

        if step.step_id != key:
            result.error(
                "STRUCTURE", location,
                f'Step key "{key}" does not match stepId "{step.step_id}"',
                "Make the map key and stepId identical",
            )

        for attr, json_key in _REQUIRED_STEP_STRINGS:
            if not _non_empty_string(getattr(step, attr)):
                result.error(
                    "STRUCTURE", location,
                    f"{json_key} must be a non-empty string",
                    f"Set {json_key}",
                    step_id=key,
                )

        uv_variables = step.uv_variables
        if not isinstance(uv_variables, (list, tuple)) or not all(
            isinstance(v, str) for v in uv_variables
        ):
            result.error(
                "STRUCTURE", location,
                "uvVariables must be an array of strings",
                "Use [] when the step takes no input variables",
                step_id=key,
            )
        if not isinstance(step.uses_stdin, bool):
            result.error(
                "STRUCTURE", location,
                "usesStdin must be a boolean",
                "Set usesStdin to true or false",
                step_id=key,
            )

        if step.step_kind is not None and not isinstance(step.step_kind, StepKind):
            result.error(
                "STRUCTURE", location,
                f"stepKind '{step.step_kind}' is not one of {_KIND_NAMES}",
                f"Set stepKind to one of {_KIND_NAMES}",
                step_id=key,
            )
        elif step.structured_gate is not None and step.step_kind is None:
            result.error(
                "STRUCTURE", location,
                "Flow step (has structuredGate) must have explicit stepKind. "
                "Tool permissions depend on stepKind.",
                f"Set stepKind to one of {_KIND_NAMES}",
                step_id=key,
            )
        elif infer_step_kind(step) is None:
            result.error(
                "STRUCTURE", location,
                f"stepKind is missing and cannot be inferred from action '{step.action}'",
                f"Set stepKind to one of {_KIND_NAMES}",
                step_id=key,
            )

        ref = step.output_schema_ref
        if ref is not None and not (_non_empty_string(ref.file) and _non_empty_string(ref.schema)):
            result.error(
                "STRUCTURE", location,
                "outputSchemaRef requires non-empty file and schema",
                'Use {"file": "step.schema.json", "schema": "#/definitions/<stepId>"}',
                step_id=key,
            )

    result.merge(validate_flow_references(registry))

    if registry.entry_step and registry.entry_step not in registry.steps:
        result.warning(
            "ENTRY", _location(registry, "entryStep"),
            f'entryStep "{registry.entry_step}" is not a registered step',
            "Point entryStep at a registered step",
        )

    return _raise_if_errors("Registry validation failed", result)


# =============================================================================
# Gate validation
# =============================================================================


def validate_step_kind_intents(registry: StepRegistry) -> None:
    """Check each gate against its step kind and each transition target.

    - allowedIntents must be non-empty and a subset of the kind's intents
    - fallbackIntent must be allowed for the kind
    - targetMode must be a known mode
    - gated steps must declare transitions
    - transition targets must be registered steps (or null)

    Raises:
        RegistryValidationError: With every violation found.
    """
    result = ValidationResult()

    for step_id, step in registry.steps.items():
        location = _location(registry, "steps", step_id)
        gate = step.structured_gate
        kind = infer_step_kind(step)

        if gate is not None:
            if not gate.allowed_intents:
                result.error(
                    "INTENT", location,
                    "structuredGate.allowedIntents must be a non-empty list",
                    "List the intents this step may declare",
                    step_id=step_id,
                )

            if kind is not None:
                allowed_for_kind = STEP_KIND_ALLOWED_INTENTS[kind]
                for intent in gate.allowed_intents or ():
                    if intent not in allowed_for_kind:
                        result.error(
                            "INTENT", location,
                            f"intent '{intent}' not allowed for stepKind '{kind.value}'. "
                            f"Allowed intents for {kind.value}: {', '.join(allowed_for_kind)}",
                            "Work steps use 'handoff' to reach closure; "
                            "only closure steps use 'closing'",
                            step_id=step_id,
                        )
                if gate.fallback_intent and gate.fallback_intent not in allowed_for_kind:
                    result.error(
                        "INTENT", location,
                        f"fallbackIntent '{gate.fallback_intent}' not allowed "
                        f"for stepKind '{kind.value}'",
                        f"Use one of: {', '.join(allowed_for_kind)}",
                        step_id=step_id,
                    )

            if gate.target_mode is not None and gate.target_mode not in TARGET_MODES:
                result.error(
                    "INTENT", location,
                    f"targetMode '{gate.target_mode}' is not one of {', '.join(TARGET_MODES)}",
                    f"Use one of: {', '.join(TARGET_MODES)}",
                    step_id=step_id,
                )

            if step.transitions is None:
                result.error(
                    "INTENT", location,
                    "structuredGate defined but transitions missing",
                    "Add a transitions map from intent to target step",
                    step_id=step_id,
                )

        for intent, rule in (step.transitions or {}).items():
            for target in rule.target_ids():
                if target not in registry.steps:
                    result.error(
                        "INTENT", location,
                        f'transition "{intent}" targets unknown step "{target}"',
                        "Point the transition at a registered step, or null to complete",
                        step_id=step_id,
                    )

    _raise_if_errors("Step registry validation failed (stepKind/intent mismatch)", result)


def validate_entry_points(registry: StepRegistry) -> None:
    """Check that execution has somewhere to start.

    The registry must define entryStep, entryStepMapping, or at least one
    flow, and every referenced entry step must be registered.

    Raises:
        RegistryValidationError: With every violation found.
    """
    result = ValidationResult()

    if not registry.entry_step and not registry.entry_step_mapping and not registry.flows:
        result.error(
            "ENTRY", _location(registry, "entryStep"),
            f'Step registry for "{registry.agent_id}" missing entry configuration',
            'Define "entryStep" or "entryStepMapping", or declare at least one flow',
        )

    if registry.entry_step and registry.entry_step not in registry.steps:
        result.error(
            "ENTRY", _location(registry, "entryStep"),
            f'entryStep "{registry.entry_step}" does not exist in steps',
            "Point entryStep at a registered step",
        )

    for mode, step_id in registry.entry_step_mapping.items():
        if step_id not in registry.steps:
            result.error(
                "ENTRY", _location(registry, "entryStepMapping", mode),
                f'entryStepMapping["{mode}"] references non-existent step "{step_id}"',
                "Point the mapping at a registered step",
            )

    _raise_if_errors("Step registry validation failed (entry points)", result)


def validate_intent_schema_ref(registry: StepRegistry) -> None:
    """Check that every gate names its intent field and an internal schema pointer.

    ``intentSchemaRef`` must start with ``#/``: a gate points into its own
    step's output schema, never into another file. Shared definitions belong
    behind a ``$ref`` in the step schema.

    Raises:
        RegistryValidationError: Listing every offending step.
    """
    result = ValidationResult()

    for step_id, step in registry.steps.items():
        gate = step.structured_gate
        if gate is None:
            continue
        location = _location(registry, "steps", step_id, "structuredGate")

        ref = gate.intent_schema_ref
        if not ref:
            result.error(
                "INTENT_REF", location,
                "has structuredGate but missing required intentSchemaRef",
                'Set intentSchemaRef, e.g. "#/properties/next_action/properties/action"',
                step_id=step_id,
            )
        elif not ref.startswith("#/"):
            result.error(
                "INTENT_REF", location,
                f'intentSchemaRef must be internal pointer starting with "#/" (got "{ref}")',
                "Use $ref in the step schema to reference common definitions",
                step_id=step_id,
            )

        if not gate.intent_field:
            result.error(
                "INTENT_REF", location,
                "has structuredGate but missing required intentField",
                'Set intentField to the dot-path of the intent, e.g. "next_action.action"',
                step_id=step_id,
            )

    _raise_if_errors("Step registry validation failed (intentSchemaRef)", result)


def _extract_enum(schema: Any, pointer: str) -> Optional[List[str]]:
    node = get_pointer_value(schema, pointer)
    if isinstance(node, dict) and isinstance(node.get("enum"), list):
        return [value for value in node["enum"] if isinstance(value, str)]
    return None


def validate_intent_schema_enums(
    registry: StepRegistry,
    schemas_dir: Union[str, Path],
    resolver: Optional[SchemaResolver] = None,
) -> None:
    """Check that each gate's allowedIntents equals its schema enum exactly.

    The pointer is looked up in the resolved step schema first, then in the
    resolved schema file root. Comparison is case-sensitive and symmetric:
    intents missing from the schema and schema values missing from the gate
    both fail.

    Args:
        registry: Registry to check.
        schemas_dir: Base directory of the step schema files.
        resolver: Resolver to reuse; a fresh one is created when omitted.

    Raises:
        RegistryValidationError: Naming the missing and extra values per step.
    """
    resolver = resolver or SchemaResolver(schemas_dir)
    result = ValidationResult()

    for step_id, step in registry.steps.items():
        gate = step.structured_gate
        ref = step.output_schema_ref
        if gate is None or ref is None:
            continue
        # Malformed refs are reported by validate_intent_schema_ref
        pointer = gate.intent_schema_ref
        if not pointer or not pointer.startswith("#/"):
            continue

        location = _location(registry, "steps", step_id, "structuredGate")
        try:
            schema_enum = _extract_enum(resolver.resolve(ref.file, ref.schema), pointer)
            if schema_enum is None:
                schema_enum = _extract_enum(resolver.resolve(ref.file, "#"), pointer)
        except SchemaResolutionError as e:
            result.error(
                "INTENT_ENUM", location,
                f"Failed to load schema for enum validation: {e}",
                f"Check outputSchemaRef {ref.file}#{ref.schema}",
                step_id=step_id,
            )
            continue

        if schema_enum is None:
            result.error(
                "INTENT_ENUM", location,
                f'intentSchemaRef "{pointer}" does not point to an enum '
                f"in schema {ref.file}#{ref.schema}",
                "Point intentSchemaRef at the property that declares the intent enum",
                step_id=step_id,
            )
            continue

        allowed = list(gate.allowed_intents)
        schema_set = set(schema_enum)
        allowed_set = set(allowed)
        missing = [intent for intent in allowed if intent not in schema_set]
        extra = [value for value in schema_enum if value not in allowed_set]
        if not missing and not extra:
            continue

        parts = []
        if missing:
            parts.append(f"allowedIntents [{', '.join(missing)}] not in schema")
        if extra:
            parts.append(f"schema has extra [{', '.join(extra)}] not in allowedIntents")
        result.error(
            "INTENT_ENUM", location,
            f"enum mismatch - {'; '.join(parts)}. "
            f"Expected exact match: allowedIntents=[{', '.join(allowed)}], "
            f"schema enum=[{', '.join(schema_enum)}]",
            "Make the schema enum and allowedIntents list the same values",
            step_id=step_id,
        )

    _raise_if_errors("Step registry validation failed (intent schema enum mismatch)", result)


# =============================================================================
# Document validation
# =============================================================================


@lru_cache(maxsize=1)
def load_document_schema() -> Dict[str, Any]:
    """Load the bundled registry document schema."""
    with open(DOCUMENT_SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def validate_registry_document(data: Mapping[str, Any]) -> None:
    """Validate a raw registry document against registry.schema.json.

    Raises:
        RegistryValidationError: With one entry per schema violation.
    """
    result = ValidationResult()
    validator = Draft7Validator(load_document_schema())

    errors = sorted(
        validator.iter_errors(data),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "root"
        agent_id = data.get("agentId") if isinstance(data, Mapping) else None
        result.error(
            "DOCUMENT",
            f"{agent_id or '?'}:{path}",
            f"{path}: {error.message}",
            "Fix the document to match registry.schema.json",
        )

    _raise_if_errors("Registry document failed schema validation", result)
