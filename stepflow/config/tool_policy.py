"""Tool policy for step-kind based permission enforcement.

Provides:
1. Tool sets per step kind (allowed tools, denied boundary tools)
2. Tool and shell-command permission checks
3. Tool list filtering and the pre-tool-use hook payload used by the driver

Work and verification steps may not perform boundary actions (closing
issues, merging PRs, publishing releases). Closure steps may, but only through
the structured boundary tools: boundary shell commands stay blocked for every
kind.

Command inspection is pattern matching over free text, not a shell parser.
The pattern list is maintained by enumeration and sufficiently obfuscated
commands can slip through it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple, Union

from stepflow.config.runtime_config import get_log_truncation
from stepflow.registry.step_registry import get_step_definition, infer_step_kind
from stepflow.registry.types import StepKind, StepRegistry

logger = logging.getLogger(__name__)

# Standard development tools; none of them mutate external state directly
BASE_TOOLS: Tuple[str, ...] = (
    "Bash",
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "Task",
    "TodoWrite",
)

# Structured tools that mutate issue tracker / VCS host state
BOUNDARY_TOOLS: Tuple[str, ...] = (
    "githubIssueClose",
    "githubIssueUpdate",
    "githubIssueComment",
    "githubPrClose",
    "githubPrMerge",
    "githubPrUpdate",
    "githubReleaseCreate",
    "githubReleasePublish",
)

# Start of a command word: not preceded by a word character, dot or dash,
# so quoted (sh -c "curl ...") and path-qualified (/usr/bin/curl) commands match
_CMD = r"(?<![\w.-])"
# gh followed by any global flags (-R owner/repo, --repo=owner/repo, ...)
_GH = r"\bgh(?:\s+-{1,2}\S+(?:\s+[^\s-]\S*)?)*\s+"
_API_HOST = r"(?:api\.github\.com|/api/v3/)"

# Checked in order; the first match is reported
BOUNDARY_BASH_PATTERNS: Tuple[Pattern[str], ...] = (
    # gh issue mutations
    re.compile(_GH + r"issue\s+close\b"),
    re.compile(_GH + r"issue\s+delete\b"),
    re.compile(_GH + r"issue\s+transfer\b"),
    re.compile(_GH + r"issue\s+edit\s+.*--state\s+closed"),
    re.compile(_GH + r"issue\s+reopen\b"),
    re.compile(_GH + r"issue\s+lock\b"),
    # gh pr mutations
    re.compile(_GH + r"pr\s+close\b"),
    re.compile(_GH + r"pr\s+merge\b"),
    re.compile(_GH + r"pr\s+ready\b"),
    re.compile(_GH + r"pr\s+reopen\b"),
    # gh release / repo mutations
    re.compile(_GH + r"release\s+(?:create|edit|delete|upload)\b"),
    re.compile(_GH + r"repo\s+(?:delete|archive)\b"),
    # Raw API passthrough can express any mutation
    re.compile(_GH + r"api\b"),
    # Generic HTTP clients aimed at the API host
    re.compile(_CMD + r"(?:curl|wget|https?|xh)\s.*?" + _API_HOST, re.DOTALL),
    re.compile(
        _CMD + r"(?:invoke-webrequest|invoke-restmethod|iwr|irm)\s.*?" + _API_HOST,
        re.DOTALL | re.IGNORECASE,
    ),
    # Interpreter one-liners reaching the API host
    re.compile(
        _CMD + r"(?:python[0-9.]*|node|ruby|perl|php|deno|bun|pwsh|powershell)\s.*?" + _API_HOST,
        re.DOTALL,
    ),
    # State-mutation payloads, plain, escaped, or single-quoted
    re.compile(r"""\\?["']state\\?["']\s*:\s*\\?["'](?:closed|merged)"""),
    # GraphQL mutations
    re.compile(r"\b(?:closeIssue|closePullRequest|mergePullRequest|deleteIssue)\b"),
)


@dataclass(frozen=True)
class ToolSet:
    """Tools available to one step kind.

    ``denied`` takes precedence over ``allowed``.
    """
    allowed: Tuple[str, ...]
    denied: Tuple[str, ...]
    block_boundary_bash: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": list(self.allowed),
            "denied": list(self.denied),
            "block_boundary_bash": self.block_boundary_bash,
        }


@dataclass(frozen=True)
class PermissionResult:
    """Outcome of a permission check. Denials are values, not exceptions."""
    allowed: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"allowed": self.allowed}
        if self.reason is not None:
            data["reason"] = self.reason
        return data


STEP_KIND_TOOL_POLICY: Dict[StepKind, ToolSet] = {
    StepKind.WORK: ToolSet(
        allowed=BASE_TOOLS,
        denied=BOUNDARY_TOOLS,
        block_boundary_bash=True,
    ),
    StepKind.VERIFICATION: ToolSet(
        allowed=BASE_TOOLS,
        denied=BOUNDARY_TOOLS,
        block_boundary_bash=True,
    ),
    StepKind.CLOSURE: ToolSet(
        allowed=BASE_TOOLS + BOUNDARY_TOOLS,
        denied=(),
        block_boundary_bash=True,
    ),
}

_ALLOWED = PermissionResult(allowed=True)


def _kind(step_kind: Union[StepKind, str]) -> StepKind:
    """Coerce a kind name to StepKind; raises ValueError for unknown kinds."""
    return step_kind if isinstance(step_kind, StepKind) else StepKind(step_kind)


def _truncate(command: str) -> str:
    limit = get_log_truncation()
    if len(command) <= limit:
        return command
    return command[:limit] + "..."


def get_tool_policy(step_kind: Union[StepKind, str]) -> ToolSet:
    """Get the tool set for a step kind."""
    return STEP_KIND_TOOL_POLICY[_kind(step_kind)]


def allows_boundary_actions(step_kind: Union[StepKind, str]) -> bool:
    """True only for closure steps."""
    return _kind(step_kind) is StepKind.CLOSURE


def is_tool_allowed(tool: str, step_kind: Union[StepKind, str]) -> PermissionResult:
    """Check whether a tool may be invoked in a step of the given kind.

    The deny list is consulted before the allow list, so a boundary tool is
    rejected even if it also appears on the allow list.

    Examples:
        >>> is_tool_allowed("Read", "work").allowed
        True
        >>> is_tool_allowed("githubPrMerge", "work").allowed
        False
    """
    kind = _kind(step_kind)
    policy = STEP_KIND_TOOL_POLICY[kind]

    if tool in policy.denied:
        logger.info("Boundary tool '%s' blocked in %s step", tool, kind.value)
        return PermissionResult(
            allowed=False,
            reason=(
                f'Tool "{tool}" is a boundary tool and not allowed in {kind.value} steps. '
                f"Boundary actions are only permitted in closure steps."
            ),
        )

    if policy.allowed and tool not in policy.allowed:
        return PermissionResult(
            allowed=False,
            reason=f'Tool "{tool}" is not in the allowed list for {kind.value} steps.',
        )

    return _ALLOWED


def find_boundary_action(command: str) -> Optional[str]:
    """Return the first boundary-action fragment found in a command, if any."""
    for pattern in BOUNDARY_BASH_PATTERNS:
        match = pattern.search(command)
        if match:
            return match.group(0).strip()
    return None


def is_bash_command_allowed(command: str, step_kind: Union[StepKind, str]) -> PermissionResult:
    """Check a shell command for boundary actions.

    Examples:
        >>> is_bash_command_allowed("gh issue view 12", "work").allowed
        True
        >>> is_bash_command_allowed("gh issue close 12", "closure").allowed
        False
    """
    kind = _kind(step_kind)
    if not STEP_KIND_TOOL_POLICY[kind].block_boundary_bash:
        return _ALLOWED

    matched = find_boundary_action(command)
    if matched is None:
        return _ALLOWED

    logger.warning(
        "Boundary bash command blocked in %s step: %s",
        kind.value,
        _truncate(command),
    )
    return PermissionResult(
        allowed=False,
        reason=(
            f'Bash command contains boundary action "{matched}" '
            f"which is not allowed in {kind.value} steps. "
            f"Boundary actions are only permitted in closure steps."
        ),
    )


def filter_allowed_tools(tools: Iterable[str], step_kind: Union[StepKind, str]) -> List[str]:
    """Remove denied tools from a configured tool list, preserving order.

    Tools that are merely absent from the allow list are kept; only the deny
    list filters.
    """
    policy = STEP_KIND_TOOL_POLICY[_kind(step_kind)]
    return [tool for tool in tools if tool not in policy.denied]


def check_tool_use(
    tool_name: str,
    tool_input: Optional[Mapping[str, Any]],
    step_kind: Union[StepKind, str],
) -> PermissionResult:
    """Check a single tool invocation, including the command of a Bash call."""
    result = is_tool_allowed(tool_name, step_kind)
    if not result.allowed:
        return result

    if tool_name == "Bash":
        command = (tool_input or {}).get("command")
        if isinstance(command, str):
            return is_bash_command_allowed(command, step_kind)
    return result


def pre_tool_use_response(result: PermissionResult) -> Dict[str, Any]:
    """Build the PreToolUse hook payload for a permission result.

    An allowed result yields an empty payload (no decision; the agent SDK
    proceeds normally).
    """
    if result.allowed:
        return {}
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": result.reason,
        }
    }


def resolve_step_tools(
    registry: StepRegistry,
    step_id: str,
    configured_tools: Iterable[str],
) -> Tuple[Optional[StepKind], List[str]]:
    """Resolve the effective kind of a step and filter its configured tools.

    Unknown steps and steps without a kind are returned unfiltered with a
    kind of None.
    """
    tools = list(configured_tools)
    step = get_step_definition(registry, step_id)
    if step is None:
        logger.debug("Step '%s' not in registry of '%s'; tools unfiltered", step_id, registry.agent_id)
        return None, tools

    kind = infer_step_kind(step)
    if kind is None:
        logger.debug("Step '%s' has no step kind; tools unfiltered", step_id)
        return None, tools

    filtered = filter_allowed_tools(tools, kind)
    logger.info(
        "Step '%s' (%s): tools filtered to %d allowed",
        step_id,
        kind.value,
        len(filtered),
    )
    return kind, filtered
