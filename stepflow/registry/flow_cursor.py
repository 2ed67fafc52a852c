"""
flow_cursor.py - Position tracking over one flow of a registry.

The driver owns step ordering; a FlowCursor is the bookkeeping it uses to walk
a flow in order. The cursor only tracks position: it never checks
permissions and never reads step output.

Unregistered step ids are skipped, matching get_flow_steps.

Usage:
    cursor = FlowCursor.from_registry(registry, "issue")
    while not cursor.is_complete():
        step = cursor.current_step()
        ...
        cursor.advance()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import FlowNotFoundError
from .step_registry import get_flow_steps
from .types import StepDefinition, StepRegistry


@dataclass(frozen=True)
class FlowState:
    """Snapshot of a cursor's position."""
    mode: str
    index: int
    total: int
    step_id: Optional[str]
    complete: bool


class FlowCursor:
    """Walks the registered steps of one flow in order."""

    def __init__(self, registry: StepRegistry, mode: str):
        steps = get_flow_steps(registry, mode)
        if not steps:
            raise FlowNotFoundError(mode, registry.agent_id)
        self.mode = mode
        self.agent_id = registry.agent_id
        self._steps: Tuple[StepDefinition, ...] = tuple(steps)
        self._index = 0

    @classmethod
    def from_registry(cls, registry: StepRegistry, mode: str) -> "FlowCursor":
        return cls(registry, mode)

    def state(self) -> FlowState:
        step = self.current_step()
        return FlowState(
            mode=self.mode,
            index=self._index,
            total=len(self._steps),
            step_id=step.step_id if step is not None else None,
            complete=self.is_complete(),
        )

    def current_step(self) -> Optional[StepDefinition]:
        """The step at the cursor, or None once the flow is complete."""
        if self.is_complete():
            return None
        return self._steps[self._index]

    def current_step_id(self) -> Optional[str]:
        step = self.current_step()
        return step.step_id if step is not None else None

    def advance(self) -> bool:
        """Move to the next step.

        Returns:
            True if the cursor now points at a step, False once past the end.
        """
        if self._index < len(self._steps):
            self._index += 1
        return not self.is_complete()

    def reset(self) -> None:
        self._index = 0

    def is_complete(self) -> bool:
        return self._index >= len(self._steps)

    def step_ids(self) -> List[str]:
        return [step.step_id for step in self._steps]

    def steps(self) -> List[StepDefinition]:
        return list(self._steps)

    def contains(self, step_id: str) -> bool:
        return any(step.step_id == step_id for step in self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"FlowCursor(agent={self.agent_id!r}, mode={self.mode!r}, index={self._index}/{len(self._steps)})"
