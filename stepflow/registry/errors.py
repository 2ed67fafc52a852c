"""Exception classes raised while loading and validating step registries."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .findings import ValidationResult


class StepRegistryError(Exception):
    """Base class for registry load and validation failures."""


class RegistryNotFoundError(StepRegistryError, FileNotFoundError):
    """Raised when no registry document exists at the expected path."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Step registry not found at {path}")


class RegistryFormatError(StepRegistryError, ValueError):
    """Raised when a registry document cannot be parsed into a registry."""


class RegistryMismatchError(StepRegistryError, ValueError):
    """Raised when the loaded document belongs to a different agent."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Registry agentId mismatch: expected "{expected}", got "{actual}"'
        )


class RegistryValidationError(StepRegistryError, ValueError):
    """Raised by a validator after all findings have been collected.

    Attributes:
        title: Which check failed (e.g. "intentSchemaRef").
        errors: Every finding as a one-line message, in discovery order.
        result: The full ValidationResult, including warnings.
    """

    def __init__(
        self,
        title: str,
        errors: List[str],
        result: Optional["ValidationResult"] = None,
    ) -> None:
        self.title = title
        self.errors = list(errors)
        self.result = result
        super().__init__(f"{title}:\n- " + "\n- ".join(self.errors))


class DuplicateStepError(StepRegistryError, ValueError):
    """Raised when adding a step whose id is already registered."""

    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f'Step "{step_id}" already exists in registry')


class FlowNotFoundError(StepRegistryError, LookupError):
    """Raised when a flow cursor is requested for an undefined or empty flow."""

    def __init__(self, mode: str, agent_id: str) -> None:
        self.mode = mode
        self.agent_id = agent_id
        super().__init__(f'No flow defined for mode "{mode}" in agent "{agent_id}"')
