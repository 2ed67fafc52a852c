#!/usr/bin/env python3
"""
validate_registry.py - Step registry validator for CI.

Runs every registry check against one agent's registry.json and reports all
findings at once:

- DOCUMENT: the raw document matches registry.schema.json
- STRUCTURE: required step fields are present, keys match stepIds
- INTENT: gate intents fit the step kind, transitions point at real steps
- ENTRY: entryStep / entryStepMapping / flows are usable
- INTENT_REF: gates name an intent field and an internal schema pointer
- INTENT_ENUM: gate intents equal the schema enum exactly
- FLOW: flows only list registered steps (warning)

Exit Codes:
  0 - All validation checks passed
  1 - Validation failed
  2 - Fatal error (registry missing, unparseable, or for another agent)

Usage:
  stepflow-validate iterator
  stepflow-validate iterator --agents-dir .agent --strict
  stepflow-validate iterator --registry path/to/registry.json --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from stepflow.registry.errors import RegistryValidationError, StepRegistryError
from stepflow.registry.findings import Severity, ValidationResult
from stepflow.registry.loader import (
    get_registry_path,
    get_schemas_dir,
    parse_step_registry,
    read_registry_document,
)
from stepflow.registry.types import StepRegistry
from stepflow.registry.validator import (
    validate_entry_points,
    validate_intent_schema_enums,
    validate_intent_schema_ref,
    validate_registry_document,
    validate_step_kind_intents,
    validate_step_registry,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_FATAL_ERROR = 2

REPORT_VERSION = "1.0.0"


def _collect(result: ValidationResult, check, *args: Any) -> None:
    """Run one validator, folding its findings into ``result``."""
    try:
        outcome = check(*args)
    except RegistryValidationError as e:
        if e.result is not None:
            result.merge(e.result)
        else:
            for message in e.errors:
                result.error("REGISTRY", e.title, message)
        return
    if isinstance(outcome, ValidationResult):
        result.merge(outcome)


def run_validation(
    agent_id: str,
    registry_path: Path,
    schemas_dir: Optional[Path] = None,
    check_enums: bool = True,
) -> Tuple[ValidationResult, StepRegistry]:
    """Run every check against one registry file.

    Raises:
        StepRegistryError: When the registry cannot be loaded at all.
    """
    data = read_registry_document(registry_path)
    result = ValidationResult()

    _collect(result, validate_registry_document, data)
    registry = parse_step_registry(data, agent_id)

    # validate_step_registry also reports dangling flow references
    _collect(result, validate_step_registry, registry)
    _collect(result, validate_step_kind_intents, registry)
    _collect(result, validate_entry_points, registry)
    _collect(result, validate_intent_schema_ref, registry)

    if check_enums:
        resolved_schemas_dir = schemas_dir or get_schemas_dir(registry, registry_path)
        logger.debug("Checking intent enums against %s", resolved_schemas_dir)
        _collect(result, validate_intent_schema_enums, registry, resolved_schemas_dir)

    return result, registry


def _print_grouped(result: ValidationResult, severity: Severity, label: str) -> None:
    for check, group in result.grouped(severity):
        print(f"\n{check} {label} ({len(group)}):", file=sys.stderr)
        print("=" * 70, file=sys.stderr)
        for finding in group:
            print(finding.render(), file=sys.stderr)


def print_errors(result: ValidationResult) -> None:
    """Print errors and warnings to stderr in deterministic order."""
    _print_grouped(result, Severity.ERROR, "Errors")
    if result.has_warnings():
        _print_grouped(result, Severity.WARNING, "Warnings")
    print(
        f"\nRegistry validation FAILED: {len(result.errors)} error(s), "
        f"{len(result.warnings)} warning(s).",
        file=sys.stderr,
    )


def print_success(result: ValidationResult, registry: StepRegistry) -> None:
    """Print success message to stdout, with warnings on stderr."""
    print(f"Registry validation PASSED for '{registry.agent_id}'.")
    print(f"  [PASS] {len(registry.steps)} steps, {len(registry.flows)} flows")
    if result.has_warnings():
        _print_grouped(result, Severity.WARNING, "Warnings")
        print("\nNote: use --strict to treat warnings as errors.", file=sys.stderr)


def build_json_output(
    agent_id: str,
    registry_path: Path,
    result: Optional[ValidationResult] = None,
    fatal: Optional[str] = None,
) -> Dict[str, Any]:
    output: Dict[str, Any] = {
        "version": REPORT_VERSION,
        "agent_id": agent_id,
        "registry": str(registry_path),
    }
    if fatal is not None:
        output.update({"status": "ERROR", "message": fatal, "errors": [], "warnings": []})
    elif result is not None:
        output.update(result.to_dict())
    return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepflow-validate",
        description="Validate an agent's step registry (structure, gates, intent enums)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - All validation checks passed
  1 - Validation failed
  2 - Fatal error (registry missing, unparseable, or agentId mismatch)

Examples:
  stepflow-validate iterator
  stepflow-validate iterator --strict
  stepflow-validate iterator --registry agents/iterator/registry.json --json
        """,
    )
    parser.add_argument("agent_id", help="Agent identifier (must match the registry's agentId)")
    parser.add_argument(
        "--agents-dir",
        help="Directory holding <agent_id>/registry.json (default from runtime config)",
    )
    parser.add_argument("--registry", help="Explicit registry file path")
    parser.add_argument(
        "--schemas-dir",
        help="Schema directory for the intent enum check (default: schemasBase beside the registry)",
    )
    parser.add_argument(
        "--skip-enums",
        action="store_true",
        help="Skip the intent enum cross-check against step schemas",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat warnings (e.g. dangling flow references) as errors",
    )
    parser.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    registry_path = (
        Path(args.registry) if args.registry else get_registry_path(args.agent_id, args.agents_dir)
    )
    schemas_dir = Path(args.schemas_dir) if args.schemas_dir else None

    try:
        result, registry = run_validation(
            args.agent_id,
            registry_path,
            schemas_dir=schemas_dir,
            check_enums=not args.skip_enums,
        )
    except StepRegistryError as e:
        if args.json:
            print(json.dumps(build_json_output(args.agent_id, registry_path, fatal=str(e)), indent=2))
        else:
            print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL_ERROR

    if args.strict:
        result.promote_warnings()

    if args.json:
        print(json.dumps(build_json_output(args.agent_id, registry_path, result), indent=2))
    elif result.has_errors():
        print_errors(result)
    else:
        print_success(result, registry)

    return EXIT_VALIDATION_FAILED if result.has_errors() else EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
