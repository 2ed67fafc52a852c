"""
Tool policy endpoints.

Provides REST endpoints for:
- Reading the tool set of a step kind
- Checking a tool invocation or shell command before the agent runs it
- Filtering a configured tool list for a step kind

Denials are ordinary 200 responses with ``allowed: false``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from stepflow.config.tool_policy import (
    allows_boundary_actions,
    check_tool_use,
    filter_allowed_tools,
    get_tool_policy,
    is_bash_command_allowed,
)
from stepflow.registry.types import StepKind

from ..schema import (
    BashCheckRequest,
    FilterToolsRequest,
    FilterToolsResponse,
    PermissionResponse,
    ToolCheckRequest,
    ToolSetResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/policy", tags=["policy"])


def tool_set_response(step_kind: StepKind) -> ToolSetResponse:
    policy = get_tool_policy(step_kind)
    return ToolSetResponse(
        step_kind=step_kind,
        allowed=list(policy.allowed),
        denied=list(policy.denied),
        block_boundary_bash=policy.block_boundary_bash,
        allows_boundary_actions=allows_boundary_actions(step_kind),
    )


@router.get("/{step_kind}", response_model=ToolSetResponse)
async def get_policy(step_kind: StepKind):
    """Get the tool set for a step kind."""
    return tool_set_response(step_kind)


@router.post("/tool-check", response_model=PermissionResponse, response_model_exclude_none=True)
async def tool_check(request: ToolCheckRequest):
    """Check one tool invocation (and its command, for Bash)."""
    result = check_tool_use(request.tool, request.tool_input, request.step_kind)
    return PermissionResponse(**result.to_dict())


@router.post("/bash-check", response_model=PermissionResponse, response_model_exclude_none=True)
async def bash_check(request: BashCheckRequest):
    """Check a shell command for boundary actions."""
    result = is_bash_command_allowed(request.command, request.step_kind)
    return PermissionResponse(**result.to_dict())


@router.post("/filter-tools", response_model=FilterToolsResponse)
async def filter_tools(request: FilterToolsRequest):
    """Remove denied tools from a configured tool list."""
    filtered = filter_allowed_tools(request.tools, request.step_kind)
    removed = [tool for tool in request.tools if tool not in filtered]
    if removed:
        logger.debug(
            "Removed %d denied tool(s) for %s steps: %s",
            len(removed),
            request.step_kind.value,
            ", ".join(removed),
        )
    return FilterToolsResponse(step_kind=request.step_kind, tools=filtered, removed=removed)
