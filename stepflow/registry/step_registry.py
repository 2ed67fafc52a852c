"""
step_registry.py - Lookup and authoring operations over a StepRegistry.

These are the agent driver's read paths into a loaded registry
(get_step_definition, get_flow_steps) plus the small set of authoring helpers
used when a registry is built in code rather than loaded from a document.

Usage:
    from stepflow.registry.step_registry import get_flow_steps, infer_step_kind

    for step in get_flow_steps(registry, "issue"):
        kind = infer_step_kind(step)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from stepflow.config.runtime_config import get_prompts_base_template

from .errors import DuplicateStepError
from .types import ACTION_STEP_KINDS, StepDefinition, StepKind, StepRegistry

logger = logging.getLogger(__name__)


def get_step_definition(registry: StepRegistry, step_id: str) -> Optional[StepDefinition]:
    """Get a step definition by id, or None if the step is not registered."""
    return registry.steps.get(step_id)


def get_step_ids(registry: StepRegistry) -> List[str]:
    """Get all step ids in registration order."""
    return list(registry.steps.keys())


def has_step(registry: StepRegistry, step_id: str) -> bool:
    return step_id in registry.steps


def get_flow(registry: StepRegistry, flow_name: str) -> Optional[Tuple[str, ...]]:
    """Get the ordered step ids of a flow, or None if the flow is undefined."""
    return registry.flows.get(flow_name)


def has_flow(registry: StepRegistry, flow_name: str) -> bool:
    return flow_name in registry.flows


def list_flows(registry: StepRegistry) -> List[str]:
    """List flow names in document order."""
    return list(registry.flows.keys())


def get_flow_steps(registry: StepRegistry, flow_name: str) -> List[StepDefinition]:
    """Get the step definitions of a flow, in flow order.

    Step ids that are not registered are skipped rather than raising, so a
    registry can be exercised while it is still being authored. Returns an
    empty list for an undefined flow.
    """
    step_ids = registry.flows.get(flow_name)
    if not step_ids:
        return []

    steps: List[StepDefinition] = []
    for step_id in step_ids:
        step = registry.steps.get(step_id)
        if step is None:
            logger.debug(
                "Flow '%s' of agent '%s' references unregistered step '%s' (skipped)",
                flow_name,
                registry.agent_id,
                step_id,
            )
            continue
        steps.append(step)
    return steps


def get_entry_step(registry: StepRegistry, mode: Optional[str] = None) -> Optional[str]:
    """Get the step id where execution starts.

    Resolution order: ``entry_step_mapping[mode]``, then the first step of the
    flow named ``mode``, then ``entry_step``.
    """
    if mode is not None:
        mapped = registry.entry_step_mapping.get(mode)
        if mapped:
            return mapped
        flow = registry.flows.get(mode)
        if flow:
            return flow[0]
    return registry.entry_step


def create_empty_registry(agent_id: str, version: str = "1.0.0") -> StepRegistry:
    """Create an empty registry with the default prompts base for the agent."""
    return StepRegistry(
        agent_id=agent_id,
        version=version,
        prompts_base=get_prompts_base_template().format(agent_id=agent_id),
    )


def add_step_definition(registry: StepRegistry, step: StepDefinition) -> None:
    """Add a step definition to a registry in place.

    Not safe to call concurrently against the same registry.

    Raises:
        DuplicateStepError: If a step with the same id is already registered.
    """
    if step.step_id in registry.steps:
        raise DuplicateStepError(step.step_id)
    registry.steps[step.step_id] = step


def infer_step_kind(step: StepDefinition) -> Optional[StepKind]:
    """Get the effective step kind of a definition.

    An explicitly declared kind wins. Otherwise the kind is inferred from the
    ``action`` address part (initial/continuation -> work, verification,
    closure). Returns None for an unrecognized declaration or for steps whose
    action carries no kind (e.g. section steps).
    """
    if step.step_kind is not None:
        if isinstance(step.step_kind, StepKind):
            return step.step_kind
        try:
            return StepKind(step.step_kind)
        except ValueError:
            return None
    return ACTION_STEP_KINDS.get(step.action)
