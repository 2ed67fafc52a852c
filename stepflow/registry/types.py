"""
types.py - Dataclasses for the declarative step registry.

A registry is plain data: a table of step definitions keyed by step id, a set
of named flows, and entry-point metadata. Step behaviour is never subclassed;
everything downstream (intent routing, tool permissions) is driven off the
StepKind value carried by each definition.

Registry documents use camelCase JSON keys; the dataclasses use snake_case.
The ``*_from_dict`` / ``*_to_dict`` pairs convert between the two without
losing information, so load -> serialize -> load is idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import RegistryFormatError


class StepKind(str, Enum):
    """Step kind for flow taxonomy.

    - work: produces artifacts, cannot declare completion
    - verification: validates prior work, cannot declare completion
    - closure: the only kind allowed to declare completion
    """
    WORK = "work"
    VERIFICATION = "verification"
    CLOSURE = "closure"


class GateIntent(str, Enum):
    """Intents a structured gate may route on."""
    NEXT = "next"
    REPEAT = "repeat"
    JUMP = "jump"
    CLOSING = "closing"
    ABORT = "abort"
    ESCALATE = "escalate"
    HANDOFF = "handoff"


# Intents each step kind may declare. Work steps hand off to closure; only
# closure steps may emit "closing".
STEP_KIND_ALLOWED_INTENTS: Dict[StepKind, Tuple[str, ...]] = {
    StepKind.WORK: ("next", "repeat", "jump", "handoff"),
    StepKind.VERIFICATION: ("next", "repeat", "jump", "escalate"),
    StepKind.CLOSURE: ("closing", "repeat"),
}

# Step kind inferred from the ``action`` address part when stepKind is omitted.
ACTION_STEP_KINDS: Dict[str, StepKind] = {
    "initial": StepKind.WORK,
    "continuation": StepKind.WORK,
    "verification": StepKind.VERIFICATION,
    "closure": StepKind.CLOSURE,
}

TARGET_MODES = ("explicit", "dynamic", "conditional")


# =============================================================================
# Step Components
# =============================================================================


@dataclass(frozen=True)
class OutputSchemaRef:
    """Reference to a step's structured-output schema.

    ``file`` is relative to the registry's schema directory; ``schema`` is a
    JSON Pointer (``#/definitions/initial.issue``) or a bare definition name.
    """
    file: str
    schema: str


@dataclass(frozen=True)
class StructuredGate:
    """Constraint on the intent a step may declare in its structured output."""
    allowed_intents: Tuple[str, ...]
    intent_field: Optional[str] = None
    intent_schema_ref: Optional[str] = None
    target_field: Optional[str] = None
    handoff_fields: Tuple[str, ...] = ()
    target_mode: Optional[str] = None
    fail_fast: bool = True
    fallback_intent: Optional[str] = None


@dataclass(frozen=True)
class TransitionRule:
    """Where an intent leads.

    Either a direct rule (``target`` may be None to signal completion) or a
    conditional rule choosing among ``targets`` by the value of ``condition``.
    """
    target: Optional[str] = None
    fallback: Optional[str] = None
    condition: Optional[str] = None
    targets: Optional[Dict[str, Optional[str]]] = None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    def target_ids(self) -> List[str]:
        """All non-terminal step ids this rule can lead to."""
        if self.is_conditional:
            ids = [t for t in (self.targets or {}).values() if t is not None]
        else:
            ids = [self.target] if self.target is not None else []
        if self.fallback is not None:
            ids.append(self.fallback)
        return ids


@dataclass(frozen=True)
class StepDefinition:
    """A single registered step.

    ``step_kind`` holds the kind as declared in the document (None when
    omitted); use ``infer_step_kind`` for the effective kind. Fields are kept
    as loaded, even when malformed, so structural validation can report them.
    """
    step_id: str
    name: str
    domain: str
    action: str
    target: str
    edition: str
    fallback_key: str
    uv_variables: Tuple[str, ...] = ()
    uses_stdin: bool = False
    step_kind: Optional[Union[StepKind, str]] = None
    adaptation: Optional[str] = None
    output_schema_ref: Optional[OutputSchemaRef] = None
    structured_gate: Optional[StructuredGate] = None
    transitions: Optional[Dict[str, TransitionRule]] = None
    description: Optional[str] = None


@dataclass
class StepRegistry:
    """Aggregate root: every step and flow for one agent.

    Read-only for the lifetime of a run once loaded and validated;
    ``add_step_definition`` exists for programmatic authoring only.
    """
    agent_id: str
    version: str
    steps: Dict[str, StepDefinition] = field(default_factory=dict)
    flows: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    entry_step: Optional[str] = None
    entry_step_mapping: Dict[str, str] = field(default_factory=dict)
    prompts_base: Optional[str] = None
    schemas_base: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StepRegistry":
        return registry_from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return registry_to_dict(self)


# =============================================================================
# Parsing
# =============================================================================


def _as_tuple(value: Any) -> Any:
    """Tuple-ize list values, leaving malformed values for the validator."""
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return value


def parse_step_kind(value: Any) -> Optional[Union[StepKind, str]]:
    """Parse a declared stepKind; unknown strings are preserved verbatim."""
    if value is None:
        return None
    if isinstance(value, StepKind):
        return value
    try:
        return StepKind(value)
    except ValueError:
        return value


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise RegistryFormatError(
            f"Invalid registry format: {what} must be an object, got {type(value).__name__}"
        )
    return value


def output_schema_ref_from_dict(data: Mapping[str, Any]) -> OutputSchemaRef:
    return OutputSchemaRef(file=data.get("file", ""), schema=data.get("schema", ""))


def structured_gate_from_dict(data: Mapping[str, Any]) -> StructuredGate:
    """Parse a StructuredGate from a registry document fragment."""
    return StructuredGate(
        allowed_intents=_as_tuple(data.get("allowedIntents", ())),
        intent_field=data.get("intentField"),
        intent_schema_ref=data.get("intentSchemaRef"),
        target_field=data.get("targetField"),
        handoff_fields=_as_tuple(data.get("handoffFields", ())),
        target_mode=data.get("targetMode"),
        fail_fast=data.get("failFast", True),
        fallback_intent=data.get("fallbackIntent"),
    )


def transition_rule_from_dict(data: Mapping[str, Any], where: str = "transition") -> TransitionRule:
    """Parse one transition rule.

    Raises:
        RegistryFormatError: If the rule, or the targets of a conditional
            rule, is not an object.
    """
    data = _require_mapping(data, where)
    if "condition" in data:
        targets = data.get("targets")
        return TransitionRule(
            condition=data["condition"],
            targets=dict(_require_mapping(targets, f"{where}.targets")) if targets is not None else {},
            fallback=data.get("fallback"),
        )
    return TransitionRule(target=data.get("target"), fallback=data.get("fallback"))


def step_definition_from_dict(data: Mapping[str, Any]) -> StepDefinition:
    """Parse a StepDefinition from a registry document entry.

    Present but empty ``outputSchemaRef`` / ``structuredGate`` objects are kept
    so the validators report their missing fields.
    """
    if not isinstance(data, Mapping):
        raise RegistryFormatError(
            f"Invalid registry format: step entry must be an object, got {type(data).__name__}"
        )

    step_id = data.get("stepId", "")
    where = f'step "{step_id}"'
    schema_ref = data.get("outputSchemaRef")
    gate = data.get("structuredGate")
    transitions = data.get("transitions")

    if schema_ref is not None:
        schema_ref = output_schema_ref_from_dict(
            _require_mapping(schema_ref, f"{where} outputSchemaRef")
        )
    if gate is not None:
        gate = structured_gate_from_dict(_require_mapping(gate, f"{where} structuredGate"))
    if transitions is not None:
        transitions = {
            intent: transition_rule_from_dict(rule, f'{where} transitions["{intent}"]')
            for intent, rule in _require_mapping(transitions, f"{where} transitions").items()
        }

    return StepDefinition(
        step_id=step_id,
        name=data.get("name", ""),
        domain=data.get("domain", ""),
        action=data.get("action", ""),
        target=data.get("target", ""),
        edition=data.get("edition", ""),
        fallback_key=data.get("fallbackKey", ""),
        uv_variables=_as_tuple(data.get("uvVariables")),
        uses_stdin=data.get("usesStdin"),
        step_kind=parse_step_kind(data.get("stepKind")),
        adaptation=data.get("adaptation"),
        output_schema_ref=schema_ref,
        structured_gate=gate,
        transitions=transitions,
        description=data.get("description"),
    )


def registry_from_dict(data: Mapping[str, Any]) -> StepRegistry:
    """Parse a StepRegistry from a loaded registry document.

    Raises:
        RegistryFormatError: If the document shape cannot be mapped at all.
    """
    if not isinstance(data, Mapping):
        raise RegistryFormatError("Invalid registry format: document must be an object")

    steps_data = data.get("steps", {})
    if not isinstance(steps_data, Mapping):
        raise RegistryFormatError("Invalid registry format: steps must be an object")

    flows_data = data.get("flows") or {}
    if not isinstance(flows_data, Mapping):
        raise RegistryFormatError("Invalid registry format: flows must be an object")
    for name, step_ids in flows_data.items():
        if not isinstance(step_ids, (list, tuple)):
            raise RegistryFormatError(
                f'Invalid registry format: flow "{name}" must be a list of step ids'
            )

    entry_step_mapping = data.get("entryStepMapping")
    if entry_step_mapping is not None:
        entry_step_mapping = _require_mapping(entry_step_mapping, "entryStepMapping")

    return StepRegistry(
        agent_id=data.get("agentId", ""),
        version=data.get("version", ""),
        steps={key: step_definition_from_dict(step) for key, step in steps_data.items()},
        flows={name: tuple(step_ids) for name, step_ids in flows_data.items()},
        entry_step=data.get("entryStep"),
        entry_step_mapping=dict(entry_step_mapping or {}),
        prompts_base=data.get("promptsBase"),
        schemas_base=data.get("schemasBase"),
    )


# =============================================================================
# Serialization
# =============================================================================


def _put(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


def _as_list(value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    return value


def structured_gate_to_dict(gate: StructuredGate) -> Dict[str, Any]:
    data: Dict[str, Any] = {"allowedIntents": _as_list(gate.allowed_intents)}
    _put(data, "intentField", gate.intent_field)
    _put(data, "intentSchemaRef", gate.intent_schema_ref)
    _put(data, "targetField", gate.target_field)
    if gate.handoff_fields:
        data["handoffFields"] = _as_list(gate.handoff_fields)
    _put(data, "targetMode", gate.target_mode)
    if gate.fail_fast is not True:
        data["failFast"] = gate.fail_fast
    _put(data, "fallbackIntent", gate.fallback_intent)
    return data


def transition_rule_to_dict(rule: TransitionRule) -> Dict[str, Any]:
    if rule.is_conditional:
        data: Dict[str, Any] = {"condition": rule.condition, "targets": dict(rule.targets or {})}
    else:
        data = {"target": rule.target}
    _put(data, "fallback", rule.fallback)
    return data


def step_definition_to_dict(step: StepDefinition) -> Dict[str, Any]:
    """Convert a StepDefinition back to its document form."""
    data: Dict[str, Any] = {
        "stepId": step.step_id,
        "name": step.name,
    }
    if step.step_kind is not None:
        data["stepKind"] = (
            step.step_kind.value if isinstance(step.step_kind, StepKind) else step.step_kind
        )
    data.update({
        "domain": step.domain,
        "action": step.action,
        "target": step.target,
        "edition": step.edition,
    })
    _put(data, "adaptation", step.adaptation)
    data["fallbackKey"] = step.fallback_key
    data["uvVariables"] = _as_list(step.uv_variables)
    data["usesStdin"] = step.uses_stdin
    if step.output_schema_ref is not None:
        data["outputSchemaRef"] = {
            "file": step.output_schema_ref.file,
            "schema": step.output_schema_ref.schema,
        }
    if step.structured_gate is not None:
        data["structuredGate"] = structured_gate_to_dict(step.structured_gate)
    if step.transitions is not None:
        data["transitions"] = {
            intent: transition_rule_to_dict(rule) for intent, rule in step.transitions.items()
        }
    _put(data, "description", step.description)
    return data


def registry_to_dict(registry: StepRegistry) -> Dict[str, Any]:
    """Convert a StepRegistry back to its document form."""
    data: Dict[str, Any] = {
        "agentId": registry.agent_id,
        "version": registry.version,
    }
    _put(data, "promptsBase", registry.prompts_base)
    _put(data, "schemasBase", registry.schemas_base)
    _put(data, "entryStep", registry.entry_step)
    if registry.entry_step_mapping:
        data["entryStepMapping"] = dict(registry.entry_step_mapping)
    if registry.flows:
        data["flows"] = {name: list(ids) for name, ids in registry.flows.items()}
    data["steps"] = {
        key: step_definition_to_dict(step) for key, step in registry.steps.items()
    }
    return data
