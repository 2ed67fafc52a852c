"""
stepflow/registry - Declarative step registry for agent flows.

This package provides the registry layer of step-flow governance:
- Types: StepDefinition, StructuredGate, StepRegistry and StepKind
- Loader: reads registry.json and runs the fail-fast checks
- Validator: structural, gate, entry point and intent enum checks
- Serializer: writes registries back to their document form
- FlowCursor: ordered walk over one flow

Usage:
    from stepflow.registry import (
        load_step_registry,
        get_flow_steps,
        infer_step_kind,
    )

    registry = load_step_registry("iterator")
    for step in get_flow_steps(registry, "issue"):
        print(step.step_id, infer_step_kind(step))
"""

from .types import (
    ACTION_STEP_KINDS,
    STEP_KIND_ALLOWED_INTENTS,
    GateIntent,
    OutputSchemaRef,
    StepDefinition,
    StepKind,
    StepRegistry,
    StructuredGate,
    TransitionRule,
    registry_from_dict,
    registry_to_dict,
    step_definition_from_dict,
    step_definition_to_dict,
)

from .errors import (
    DuplicateStepError,
    FlowNotFoundError,
    RegistryFormatError,
    RegistryMismatchError,
    RegistryNotFoundError,
    RegistryValidationError,
    StepRegistryError,
)

from .findings import (
    Finding,
    Severity,
    ValidationResult,
)

from .step_registry import (
    add_step_definition,
    create_empty_registry,
    get_entry_step,
    get_flow,
    get_flow_steps,
    get_step_definition,
    get_step_ids,
    has_flow,
    has_step,
    infer_step_kind,
    list_flows,
)

from .loader import (
    RegistryLoaderOptions,
    get_registry_path,
    get_schemas_dir,
    load_step_registry,
    parse_step_registry,
    read_registry_document,
)

from .validator import (
    validate_entry_points,
    validate_flow_references,
    validate_intent_schema_enums,
    validate_intent_schema_ref,
    validate_registry_document,
    validate_step_kind_intents,
    validate_step_registry,
)

from .serializer import (
    save_step_registry,
    serialize_registry,
)

from .flow_cursor import (
    FlowCursor,
    FlowState,
)

__all__ = [
    # Types
    "ACTION_STEP_KINDS",
    "STEP_KIND_ALLOWED_INTENTS",
    "GateIntent",
    "OutputSchemaRef",
    "StepDefinition",
    "StepKind",
    "StepRegistry",
    "StructuredGate",
    "TransitionRule",
    "registry_from_dict",
    "registry_to_dict",
    "step_definition_from_dict",
    "step_definition_to_dict",
    # Errors
    "DuplicateStepError",
    "FlowNotFoundError",
    "RegistryFormatError",
    "RegistryMismatchError",
    "RegistryNotFoundError",
    "RegistryValidationError",
    "StepRegistryError",
    # Findings
    "Finding",
    "Severity",
    "ValidationResult",
    # Lookup / authoring
    "add_step_definition",
    "create_empty_registry",
    "get_entry_step",
    "get_flow",
    "get_flow_steps",
    "get_step_definition",
    "get_step_ids",
    "has_flow",
    "has_step",
    "infer_step_kind",
    "list_flows",
    # Loader
    "RegistryLoaderOptions",
    "get_registry_path",
    "get_schemas_dir",
    "load_step_registry",
    "parse_step_registry",
    "read_registry_document",
    # Validators
    "validate_entry_points",
    "validate_flow_references",
    "validate_intent_schema_enums",
    "validate_intent_schema_ref",
    "validate_registry_document",
    "validate_step_kind_intents",
    "validate_step_registry",
    # Serializer
    "save_step_registry",
    "serialize_registry",
    # Flow traversal
    "FlowCursor",
    "FlowState",
]
