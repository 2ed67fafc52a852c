"""Findings reported by the registry checks.

A check never stops at its first problem. It records a Finding per problem
into a ValidationResult, and the caller decides whether errors are fatal.
Warnings describe registries that still run (a flow naming an unwritten
step, say) and only fail under ``--strict``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from itertools import groupby
from typing import Any, Dict, Iterator, List, Optional, Tuple


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


_TAGS = {Severity.ERROR: "[FAIL]", Severity.WARNING: "[WARN]"}


@dataclass(frozen=True)
class Finding:
    """One problem in a registry.

    ``check`` names the check that found it (STRUCTURE, INTENT, ENTRY, ...).
    ``location`` is registry-relative, e.g. ``iterator:steps.initial.issue``.
    """

    check: str
    location: str
    problem: str
    fix: str = ""
    step_id: Optional[str] = None
    severity: Severity = Severity.ERROR

    @property
    def message(self) -> str:
        if self.step_id is not None:
            return f'Step "{self.step_id}": {self.problem}'
        return self.problem

    def render(self) -> str:
        return (
            f"{_TAGS[self.severity]} {self.check}: {self.location} {self.problem}\n"
            f"  Fix: {self.fix or '-'}"
        )

    def sort_key(self) -> Tuple[str, str, str]:
        return (self.check, self.location, self.problem)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check": self.check,
            "severity": self.severity.value,
            "location": self.location,
            "problem": self.problem,
            "fix": self.fix,
            "step_id": self.step_id,
        }


@dataclass
class ValidationResult:
    """Every finding of one or more checks, in discovery order."""

    findings: List[Finding] = field(default_factory=list)

    def error(
        self,
        check: str,
        location: str,
        problem: str,
        fix: str = "",
        step_id: Optional[str] = None,
    ) -> None:
        self.findings.append(Finding(check, location, problem, fix, step_id))

    def warning(
        self,
        check: str,
        location: str,
        problem: str,
        fix: str = "",
        step_id: Optional[str] = None,
    ) -> None:
        self.findings.append(
            Finding(check, location, problem, fix, step_id, Severity.WARNING)
        )

    def merge(self, other: "ValidationResult") -> None:
        self.findings.extend(other.findings)

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity is Severity.WARNING]

    def has_errors(self) -> bool:
        return any(f.severity is Severity.ERROR for f in self.findings)

    def has_warnings(self) -> bool:
        return any(f.severity is Severity.WARNING for f in self.findings)

    def messages(self) -> List[str]:
        """One line per error, in discovery order."""
        return [f.message for f in self.errors]

    def ordered(self, severity: Severity) -> List[Finding]:
        """Findings of one severity sorted by check, location and problem."""
        return sorted(
            (f for f in self.findings if f.severity is severity),
            key=Finding.sort_key,
        )

    def grouped(self, severity: Severity) -> Iterator[Tuple[str, List[Finding]]]:
        """Yield ``(check, findings)`` pairs in check order."""
        for check, group in groupby(self.ordered(severity), key=lambda f: f.check):
            yield check, list(group)

    def promote_warnings(self) -> None:
        """Turn every warning into an error (``--strict``)."""
        self.findings = [
            dataclasses.replace(f, severity=Severity.ERROR) for f in self.findings
        ]

    def to_dict(self) -> Dict[str, Any]:
        errors = self.ordered(Severity.ERROR)
        warnings = self.ordered(Severity.WARNING)
        return {
            "status": "FAIL" if errors else "PASS",
            "error_count": len(errors),
            "warning_count": len(warnings),
            "errors": [f.to_dict() for f in errors],
            "warnings": [f.to_dict() for f in warnings],
        }
