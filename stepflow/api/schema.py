"""
Pydantic schema models for the stepflow policy API.

Request bodies carry a ``step_kind`` typed as StepKind, so FastAPI rejects
unknown kinds with 422 before any handler runs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from stepflow.registry.types import StepKind


# =============================================================================
# Health
# =============================================================================


class HealthStatus(BaseModel):
    """Response model for /api/health."""
    status: str = Field(description="Overall health status (ok)")
    version: str = Field(description="stepflow API version")
    timestamp: str = Field(description="ISO 8601 timestamp of health check")
    agents_dir: str = Field(description="Directory registries are loaded from")
    cached_registries: List[str] = Field(
        default_factory=list, description="Agent ids with a loaded registry"
    )


# =============================================================================
# Policy
# =============================================================================


class ToolSetResponse(BaseModel):
    """Tool set of one step kind."""
    step_kind: StepKind
    allowed: List[str] = Field(description="Tools permitted for this kind")
    denied: List[str] = Field(description="Boundary tools denied for this kind")
    block_boundary_bash: bool = Field(description="Whether boundary shell commands are blocked")
    allows_boundary_actions: bool = Field(description="True only for closure steps")


class ToolCheckRequest(BaseModel):
    tool: str = Field(description="Tool name, e.g. 'Bash' or 'githubPrMerge'")
    step_kind: StepKind
    tool_input: Optional[Dict[str, Any]] = Field(
        None, description="Tool input; for Bash the 'command' is inspected too"
    )


class BashCheckRequest(BaseModel):
    command: str = Field(description="Shell command the agent is about to run")
    step_kind: StepKind


class FilterToolsRequest(BaseModel):
    tools: List[str] = Field(description="Configured tool list, in order")
    step_kind: StepKind


class PermissionResponse(BaseModel):
    """Permission decision. ``reason`` is present only for denials."""
    allowed: bool
    reason: Optional[str] = None


class FilterToolsResponse(BaseModel):
    step_kind: StepKind
    tools: List[str] = Field(description="Configured tools minus denied ones, order kept")
    removed: List[str] = Field(default_factory=list, description="Tools removed by the deny list")


# =============================================================================
# Registries
# =============================================================================


class StepResponse(BaseModel):
    """A registered step with its effective kind and tool set."""
    agent_id: str
    step_id: str
    effective_kind: Optional[StepKind] = None
    definition: Dict[str, Any] = Field(description="Step definition in document form")
    tool_policy: Optional[ToolSetResponse] = None


class FlowResponse(BaseModel):
    """A flow's registered steps, in order."""
    agent_id: str
    flow: str
    step_ids: List[str] = Field(description="Registered step ids in flow order")
    skipped: List[str] = Field(
        default_factory=list, description="Flow entries that name unregistered steps"
    )
    steps: List[Dict[str, Any]] = Field(default_factory=list)
