"""Tests for step registry types and lookup operations.

This module tests document parsing into StepRegistry dataclasses, the lookup
helpers used by the agent driver, step kind inference and programmatic
registry authoring.
"""

import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from stepflow.registry.errors import DuplicateStepError, RegistryFormatError
from stepflow.registry.step_registry import (
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
from stepflow.registry.types import (
    STEP_KIND_ALLOWED_INTENTS,
    OutputSchemaRef,
    StepDefinition,
    StepKind,
    StepRegistry,
    TransitionRule,
    registry_from_dict,
    registry_to_dict,
)


def _step(step_id: str, action: str = "initial", step_kind=None) -> StepDefinition:
    return StepDefinition(
        step_id=step_id,
        name=step_id,
        domain="steps",
        action=action,
        target="issue",
        edition="default",
        fallback_key=step_id.replace(".", "_"),
        step_kind=step_kind,
    )


class TestParsing:
    """Document -> dataclass conversion."""

    def test_registry_fields(self, registry):
        assert registry.agent_id == "iterator"
        assert registry.version == "1.0.0"
        assert registry.entry_step == "initial.issue"
        assert registry.entry_step_mapping == {"issue": "initial.issue"}
        assert registry.prompts_base == ".agent/iterator/prompts"
        assert registry.schemas_base == "schemas"
        assert registry.flows["issue"] == (
            "initial.issue",
            "continuation.issue",
            "verification.issue",
            "closure.issue",
        )

    def test_step_fields(self, registry):
        step = registry.steps["initial.issue"]
        assert step.step_kind is StepKind.WORK
        assert (step.domain, step.action, step.target) == ("steps", "initial", "issue")
        assert step.uv_variables == ("issue",)
        assert step.uses_stdin is False
        assert step.output_schema_ref.file == "issue.schema.json"
        assert step.output_schema_ref.schema == "#/definitions/initial.issue"

        gate = step.structured_gate
        assert gate.allowed_intents == ("next", "repeat", "handoff")
        assert gate.intent_field == "next_action.action"
        assert gate.intent_schema_ref == "#/properties/next_action/properties/action"
        assert gate.target_field == "next_action.target"
        assert gate.handoff_fields == ("summary",)
        assert gate.fail_fast is True

    def test_transition_rules(self, registry):
        closure = registry.steps["closure.issue"]
        assert closure.transitions["closing"] == TransitionRule(target=None)
        assert closure.transitions["repeat"].target_ids() == ["closure.issue", "continuation.issue"]

        escalate = registry.steps["verification.issue"].transitions["escalate"]
        assert escalate.is_conditional
        assert escalate.targets == {"high": "closure.issue", "low": None}
        assert escalate.target_ids() == ["closure.issue"]

    def test_optional_fields(self, registry):
        section = registry.steps["section.projectcontext"]
        assert section.adaptation == "compact"
        assert section.uses_stdin is True
        assert section.uv_variables == ()
        assert section.structured_gate is None
        assert section.transitions is None
        assert section.description == "Injected ahead of every issue step"

    def test_unknown_step_kind_kept_verbatim(self, registry_document):
        registry_document["steps"]["initial.issue"]["stepKind"] = "deploy"
        registry = registry_from_dict(registry_document)
        assert registry.steps["initial.issue"].step_kind == "deploy"

    def test_missing_fields_kept_for_validation(self, registry_document):
        del registry_document["steps"]["initial.issue"]["usesStdin"]
        del registry_document["steps"]["initial.issue"]["uvVariables"]
        step = registry_from_dict(registry_document).steps["initial.issue"]
        assert step.uses_stdin is None
        assert step.uv_variables is None

    @pytest.mark.parametrize("mutate", [
        lambda doc: doc.update(steps=[]),
        lambda doc: doc.update(flows=["initial.issue"]),
        lambda doc: doc["flows"].update(issue="initial.issue"),
        lambda doc: doc["steps"].update(bad="not-an-object"),
        lambda doc: doc["steps"]["verification.issue"]["transitions"].update(next="closure.issue"),
        lambda doc: doc["steps"]["verification.issue"]["transitions"]["escalate"].update(targets=["closure.issue"]),
        lambda doc: doc["steps"]["initial.issue"].update(transitions=["next"]),
        lambda doc: doc.update(entryStepMapping="initial.issue"),
        lambda doc: doc["steps"]["initial.issue"].update(outputSchemaRef="issue.schema.json#/definitions/initial"),
        lambda doc: doc["steps"]["initial.issue"].update(structuredGate=["next"]),
    ])
    def test_malformed_shapes_raise_format_error(self, registry_document, mutate):
        mutate(registry_document)
        with pytest.raises(RegistryFormatError):
            registry_from_dict(registry_document)

    def test_format_error_names_the_transition(self, registry_document):
        registry_document["steps"]["verification.issue"]["transitions"]["next"] = "closure.issue"
        with pytest.raises(RegistryFormatError) as exc_info:
            registry_from_dict(registry_document)
        assert str(exc_info.value) == (
            'Invalid registry format: step "verification.issue" transitions["next"] '
            "must be an object, got str"
        )

    def test_empty_gate_and_schema_ref_are_kept(self, registry_document):
        """Empty objects parse to values the validators can report on."""
        step_doc = registry_document["steps"]["initial.issue"]
        step_doc["structuredGate"] = {}
        step_doc["outputSchemaRef"] = {}
        step = registry_from_dict(registry_document).steps["initial.issue"]
        assert step.structured_gate is not None
        assert step.structured_gate.allowed_intents == ()
        assert step.output_schema_ref == OutputSchemaRef(file="", schema="")

    def test_null_gate_and_schema_ref_are_absent(self, registry_document):
        step_doc = registry_document["steps"]["section.projectcontext"]
        step_doc["structuredGate"] = None
        step_doc["outputSchemaRef"] = None
        step = registry_from_dict(registry_document).steps["section.projectcontext"]
        assert step.structured_gate is None
        assert step.output_schema_ref is None

    def test_non_mapping_document(self):
        with pytest.raises(RegistryFormatError):
            registry_from_dict(["not", "a", "registry"])

    def test_to_dict_round_trip(self, registry_document):
        """Parsing then converting back yields the original document."""
        registry = StepRegistry.from_dict(registry_document)
        assert registry.to_dict() == registry_document
        assert registry_from_dict(registry_to_dict(registry)) == registry


class TestLookup:
    """Driver touchpoints and lookup helpers."""

    def test_get_step_definition(self, registry):
        assert get_step_definition(registry, "closure.issue").step_kind is StepKind.CLOSURE
        assert get_step_definition(registry, "nope") is None

    def test_step_ids_and_membership(self, registry):
        assert get_step_ids(registry)[0] == "initial.issue"
        assert len(get_step_ids(registry)) == 5
        assert has_step(registry, "section.projectcontext")
        assert not has_step(registry, "nope")

    def test_flows(self, registry):
        assert list_flows(registry) == ["issue"]
        assert has_flow(registry, "issue")
        assert not has_flow(registry, "project")
        assert get_flow(registry, "project") is None

    def test_get_flow_steps_in_order(self, registry):
        steps = get_flow_steps(registry, "issue")
        assert [s.step_id for s in steps] == [
            "initial.issue",
            "continuation.issue",
            "verification.issue",
            "closure.issue",
        ]

    def test_get_flow_steps_undefined_flow_is_empty(self, registry):
        assert get_flow_steps(registry, "project") == []

    def test_get_flow_steps_skips_unregistered_ids_leniently(self, registry):
        """Unregistered ids are dropped, not raised, so partial registries stay usable."""
        registry.flows["draft"] = ("initial.issue", "not.yet.written", "closure.issue")
        steps = get_flow_steps(registry, "draft")
        assert [s.step_id for s in steps] == ["initial.issue", "closure.issue"]

    def test_get_entry_step_resolution_order(self, registry):
        registry.flows["project"] = ("continuation.issue",)
        assert get_entry_step(registry, "issue") == "initial.issue"
        assert get_entry_step(registry, "project") == "continuation.issue"
        assert get_entry_step(registry, "unknown") == "initial.issue"
        assert get_entry_step(registry) == "initial.issue"

        registry.entry_step_mapping["project"] = "verification.issue"
        assert get_entry_step(registry, "project") == "verification.issue"


class TestStepKinds:
    """Step kind inference and the intent table."""

    @pytest.mark.parametrize("action,expected", [
        ("initial", StepKind.WORK),
        ("continuation", StepKind.WORK),
        ("verification", StepKind.VERIFICATION),
        ("closure", StepKind.CLOSURE),
        ("section", None),
    ])
    def test_inferred_from_action(self, action, expected):
        assert infer_step_kind(_step("s", action=action)) is expected

    def test_explicit_kind_wins(self):
        assert infer_step_kind(_step("s", action="initial", step_kind=StepKind.CLOSURE)) is StepKind.CLOSURE
        assert infer_step_kind(_step("s", action="section", step_kind="verification")) is StepKind.VERIFICATION

    def test_invalid_declared_kind_infers_nothing(self):
        assert infer_step_kind(_step("s", action="initial", step_kind="deploy")) is None

    def test_only_closure_may_close(self):
        assert "closing" in STEP_KIND_ALLOWED_INTENTS[StepKind.CLOSURE]
        assert "closing" not in STEP_KIND_ALLOWED_INTENTS[StepKind.WORK]
        assert "closing" not in STEP_KIND_ALLOWED_INTENTS[StepKind.VERIFICATION]
        assert "handoff" in STEP_KIND_ALLOWED_INTENTS[StepKind.WORK]
        assert "escalate" in STEP_KIND_ALLOWED_INTENTS[StepKind.VERIFICATION]


class TestAuthoring:
    """Programmatic registry construction."""

    def test_create_empty_registry(self):
        registry = create_empty_registry("reviewer")
        assert registry.agent_id == "reviewer"
        assert registry.version == "1.0.0"
        assert registry.steps == {}
        assert registry.flows == {}
        assert registry.prompts_base == ".agent/reviewer/prompts"

    def test_add_step_definition(self):
        registry = create_empty_registry("reviewer", version="2.0.0")
        add_step_definition(registry, _step("initial.review"))
        assert get_step_ids(registry) == ["initial.review"]
        assert registry.version == "2.0.0"

    def test_add_duplicate_step_raises(self):
        registry = create_empty_registry("reviewer")
        add_step_definition(registry, _step("initial.review"))
        with pytest.raises(DuplicateStepError, match='Step "initial.review" already exists'):
            add_step_definition(registry, _step("initial.review", action="closure"))
        assert registry.steps["initial.review"].action == "initial"
