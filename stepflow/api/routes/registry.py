"""
Registry lookup endpoints.

Provides REST endpoints for:
- Getting a step definition with its effective kind and tool set
- Getting a flow's steps in order

Registries are loaded on first use and cached on the app instance
(``app.state.registry_cache``); each app owns its cache.
"""

from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, HTTPException, Request

from stepflow.registry.errors import (
    RegistryMismatchError,
    RegistryNotFoundError,
    StepRegistryError,
)
from stepflow.registry.loader import load_step_registry
from stepflow.registry.step_registry import (
    get_flow,
    get_flow_steps,
    get_step_definition,
    infer_step_kind,
)
from stepflow.registry.types import StepRegistry, step_definition_to_dict

from ..schema import FlowResponse, StepResponse
from .policy import tool_set_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/registries", tags=["registries"])


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": message, "details": {}},
    )


def get_registry(request: Request, agent_id: str) -> StepRegistry:
    """Get a registry from the app cache, loading it on first use."""
    cache: Dict[str, StepRegistry] = request.app.state.registry_cache
    registry = cache.get(agent_id)
    if registry is not None:
        return registry

    try:
        registry = load_step_registry(agent_id, request.app.state.agents_dir)
    except RegistryNotFoundError as e:
        raise _error(404, "registry_not_found", str(e))
    except RegistryMismatchError as e:
        raise _error(409, "registry_mismatch", str(e))
    except StepRegistryError as e:
        logger.warning("Registry '%s' failed to load: %s", agent_id, e)
        raise _error(422, "registry_invalid", str(e))

    cache[agent_id] = registry
    return registry


@router.get("/{agent_id}/steps/{step_id}", response_model=StepResponse)
async def get_step(agent_id: str, step_id: str, request: Request):
    """Get a step definition with its effective kind and tool set."""
    registry = get_registry(request, agent_id)
    step = get_step_definition(registry, step_id)
    if step is None:
        raise _error(404, "step_not_found", f"Step '{step_id}' not found in registry '{agent_id}'")

    kind = infer_step_kind(step)
    return StepResponse(
        agent_id=agent_id,
        step_id=step_id,
        effective_kind=kind,
        definition=step_definition_to_dict(step),
        tool_policy=tool_set_response(kind) if kind is not None else None,
    )


@router.get("/{agent_id}/flows/{flow}", response_model=FlowResponse)
async def get_flow_detail(agent_id: str, flow: str, request: Request):
    """Get a flow's registered steps in order (unregistered ids are listed as skipped)."""
    registry = get_registry(request, agent_id)
    step_ids = get_flow(registry, flow)
    if step_ids is None:
        raise _error(404, "flow_not_found", f"Flow '{flow}' not found in registry '{agent_id}'")

    steps = get_flow_steps(registry, flow)
    return FlowResponse(
        agent_id=agent_id,
        flow=flow,
        step_ids=[step.step_id for step in steps],
        skipped=[step_id for step_id in step_ids if step_id not in registry.steps],
        steps=[step_definition_to_dict(step) for step in steps],
    )
