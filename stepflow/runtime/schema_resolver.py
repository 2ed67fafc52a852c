"""
schema_resolver.py - JSON Schema $ref resolution for step output schemas.

Produces fully dereferenced schemas for structured step output:

1. Resolves internal references ("#/$defs/foo") and cross-file references
   ("common.schema.json#/$defs/foo", relative to the referring file)
2. Merges allOf compositions into a single object schema
3. Adds additionalProperties: false to every object schema that does not
   declare it (structured output rejects open objects)
4. Caches parsed schema files per resolver instance

The cache is the only mutable state. Each agent run owns its resolver; there
is deliberately no module-level instance.

Usage:
    from stepflow.runtime.schema_resolver import SchemaResolver

    resolver = SchemaResolver(".agent/iterator/schemas")
    schema = resolver.resolve("issue.schema.json", "#/definitions/initial.issue")
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Union

logger = logging.getLogger(__name__)

# Guards against runaway $ref / allOf expansion
MAX_DEPTH = 50

# Keywords whose value is a map of name -> subschema
SCHEMA_MAP_KEYWORDS = (
    "properties",
    "patternProperties",
    "$defs",
    "definitions",
    "dependentSchemas",
)

# Keywords whose value is a list of subschemas (allOf is merged separately)
SCHEMA_LIST_KEYWORDS = ("anyOf", "oneOf", "prefixItems")

# Keywords whose value is a single subschema
SCHEMA_VALUE_KEYWORDS = (
    "items",
    "additionalItems",
    "additionalProperties",
    "unevaluatedProperties",
    "unevaluatedItems",
    "contains",
    "propertyNames",
    "not",
    "if",
    "then",
    "else",
)

EXAMPLE_POINTER = "#/definitions/stepId"


class SchemaResolutionError(Exception):
    """Raised when a schema cannot be resolved."""


class SchemaPointerError(SchemaResolutionError, LookupError):
    """A JSON Pointer does not resolve to a node in a schema file.

    Schema authors hit this often (typos in step ids, definitions moved
    between files), so the message says what a valid pointer looks like.
    """

    def __init__(self, pointer: str, file: str) -> None:
        self.pointer = pointer
        self.file = file
        super().__init__(
            f'No schema pointer "{pointer}" found in {file}. '
            f'Ensure the pointer uses JSON Pointer format (e.g., "{EXAMPLE_POINTER}") '
            f"and that the referenced definition exists in the schema file."
        )


class SchemaFileNotFoundError(SchemaResolutionError, FileNotFoundError):
    """A schema file does not exist under the resolver's base directory."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = str(path)
        super().__init__(f"Schema file not found: {path}")


def normalize_schema_identifier(identifier: str) -> str:
    """Strip leading '#' characters ("##/a" and "#/a" both become "/a")."""
    normalized = identifier
    while normalized.startswith("#"):
        normalized = normalized[1:]
    return normalized


def _unescape_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _pointer_tokens(pointer: str) -> List[str]:
    path = normalize_schema_identifier(pointer)
    if not path or path == "/":
        return []
    if path.startswith("/"):
        path = path[1:]
    return [_unescape_token(part) for part in path.split("/")]


def get_pointer_value(schema: Any, pointer: str) -> Optional[Any]:
    """Walk a JSON Pointer through an already-loaded schema.

    Unlike ``SchemaResolver.resolve`` this does not follow $refs. Returns None
    when any segment is missing.
    """
    current = schema
    for token in _pointer_tokens(pointer):
        if isinstance(current, dict):
            if token not in current:
                return None
            current = current[token]
        elif isinstance(current, list):
            try:
                current = current[int(token)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current


def _is_object_schema(schema: Dict[str, Any]) -> bool:
    schema_type = schema.get("type")
    if schema_type == "object":
        return True
    if isinstance(schema_type, list) and "object" in schema_type:
        return True
    return "properties" in schema


def _ensure_additional_properties_false(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Close object schemas unless they already declare additionalProperties."""
    if _is_object_schema(schema) and "additionalProperties" not in schema:
        schema["additionalProperties"] = False
    return schema


def _merge_schema(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """Merge ``source`` into ``target`` in place.

    ``required`` is unioned (first-seen order), ``properties`` is unioned with
    later entries winning per property, and every other key is overwritten.
    """
    for key, value in source.items():
        if key == "required" and isinstance(value, list):
            existing = target.get("required") or []
            target["required"] = list(dict.fromkeys([*existing, *value]))
        elif key == "properties" and isinstance(value, dict):
            merged = dict(target.get("properties") or {})
            merged.update(value)
            target["properties"] = merged
        else:
            target[key] = value


class SchemaResolver:
    """Schema resolver with a per-instance file cache.

    Not thread-safe; ``clear_cache`` and ``resolve`` must not race on the same
    instance.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir).resolve()
        self._file_cache: Dict[Path, Any] = {}

    @property
    def cached_files(self) -> List[str]:
        """Absolute paths of the schema files currently cached."""
        return [str(path) for path in self._file_cache]

    def clear_cache(self) -> None:
        """Drop all cached files; the next resolve re-reads from disk."""
        self._file_cache.clear()

    def resolve(self, schema_file: str, schema_name: str) -> Dict[str, Any]:
        """Resolve a schema and prepare it for structured output.

        Args:
            schema_file: File name relative to the base directory.
            schema_name: JSON Pointer ("#/definitions/initial.issue") or a bare
                name looked up in definitions, then $defs, then top level.

        Returns:
            A fresh, fully dereferenced schema. Mutating it never affects the
            cache.

        Raises:
            SchemaPointerError: If the pointer or name does not resolve.
            SchemaFileNotFoundError: If the schema file does not exist.
            SchemaResolutionError: On invalid JSON, files outside the base
                directory, or runaway recursion.
        """
        file_path = self._file_path(self.base_dir / schema_file)
        document = self._load_file(file_path)

        identifier = normalize_schema_identifier(schema_name)
        schema = self._lookup(document, identifier, schema_file)

        # A self-reference back to the requested pointer collapses on first re-entry
        visited = frozenset({f"{file_path}::#{identifier}"}) if identifier.startswith("/") else frozenset()
        resolved = self._resolve_node(schema, file_path, visited, 0)
        if not isinstance(resolved, dict):
            raise SchemaPointerError(schema_name, schema_file)
        return resolved

    # -------------------------------------------------------------------------
    # File handling
    # -------------------------------------------------------------------------

    def _file_path(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.base_dir and self.base_dir not in resolved.parents:
            raise SchemaResolutionError(
                f"Schema file {path} is outside the schema directory {self.base_dir}"
            )
        return resolved

    def _display_name(self, path: Path) -> str:
        try:
            return path.relative_to(self.base_dir).as_posix()
        except ValueError:
            return str(path)

    def _load_file(self, path: Path) -> Any:
        cached = self._file_cache.get(path)
        if cached is not None:
            return cached

        if not path.is_file():
            raise SchemaFileNotFoundError(path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
        except json.JSONDecodeError as e:
            raise SchemaResolutionError(f"Invalid JSON in schema file {path}: {e}") from e

        self._file_cache[path] = parsed
        logger.debug("Loaded schema file %s", path)
        return parsed

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _lookup(self, document: Any, identifier: str, display_file: str) -> Dict[str, Any]:
        if identifier.startswith("/") or identifier == "":
            result = self._navigate(document, identifier, display_file)
            if not isinstance(result, dict):
                raise SchemaPointerError(identifier, display_file)
            return result

        if isinstance(document, dict):
            for container in ("definitions", "$defs"):
                defs = document.get(container)
                if isinstance(defs, dict) and isinstance(defs.get(identifier), dict):
                    return defs[identifier]
            if isinstance(document.get(identifier), dict):
                return document[identifier]

        raise SchemaPointerError(identifier, display_file)

    def _navigate(self, document: Any, path: str, display_file: str) -> Any:
        current = document
        for token in _pointer_tokens(path):
            if isinstance(current, dict) and token in current:
                current = current[token]
            elif isinstance(current, list) and token.isdigit() and int(token) < len(current):
                current = current[int(token)]
            else:
                raise SchemaPointerError(path, display_file)
        return current

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _resolve_node(
        self,
        node: Any,
        current_file: Path,
        visited: FrozenSet[str],
        depth: int,
        close_objects: bool = True,
    ) -> Any:
        if depth > MAX_DEPTH:
            raise SchemaResolutionError(
                f"Maximum recursion depth ({MAX_DEPTH}) exceeded resolving $refs "
                f"in {self._display_name(current_file)}"
            )

        if not isinstance(node, dict):
            return copy.deepcopy(node)

        if isinstance(node.get("$ref"), str):
            siblings = {k: v for k, v in node.items() if k != "$ref"}
            if not siblings:
                return self._resolve_ref(
                    node["$ref"], current_file, visited, depth + 1, close_objects
                )
            target = self._resolve_ref(node["$ref"], current_file, visited, depth + 1, False)
            merged: Dict[str, Any] = {}
            if isinstance(target, dict):
                _merge_schema(merged, target)
            _merge_schema(
                merged,
                self._resolve_node(siblings, current_file, visited, depth + 1, close_objects=False),
            )
            return _ensure_additional_properties_false(merged) if close_objects else merged

        if isinstance(node.get("allOf"), list):
            parent = {k: v for k, v in node.items() if k != "allOf"}
            merged = self._resolve_children(parent, current_file, visited, depth)
            for branch in node["allOf"]:
                resolved = self._resolve_node(
                    branch, current_file, visited, depth + 1, close_objects=False
                )
                if isinstance(resolved, dict):
                    _merge_schema(merged, resolved)
            return _ensure_additional_properties_false(merged) if close_objects else merged

        resolved_node = self._resolve_children(node, current_file, visited, depth)
        return _ensure_additional_properties_false(resolved_node) if close_objects else resolved_node

    def _resolve_children(
        self,
        node: Dict[str, Any],
        current_file: Path,
        visited: FrozenSet[str],
        depth: int,
    ) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        for key, value in node.items():
            if key in SCHEMA_MAP_KEYWORDS and isinstance(value, dict):
                resolved[key] = {
                    name: self._resolve_node(sub, current_file, visited, depth)
                    for name, sub in value.items()
                }
            elif (key in SCHEMA_LIST_KEYWORDS or key == "items") and isinstance(value, list):
                resolved[key] = [
                    self._resolve_node(sub, current_file, visited, depth) for sub in value
                ]
            elif key in SCHEMA_VALUE_KEYWORDS and isinstance(value, dict):
                resolved[key] = self._resolve_node(value, current_file, visited, depth)
            else:
                # enum, const, default, examples and annotations are data
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _resolve_ref(
        self,
        ref: str,
        current_file: Path,
        visited: FrozenSet[str],
        depth: int,
        close_objects: bool = True,
    ) -> Any:
        ref_key = f"{current_file}::{ref}"
        if ref_key in visited:
            logger.debug("Circular $ref %s in %s; substituting {}", ref, current_file)
            return {}
        visited = visited | {ref_key}

        file_part, _, fragment = ref.partition("#")
        target_file = current_file
        if file_part:
            target_file = self._file_path(current_file.parent / file_part)

        document = self._load_file(target_file)
        target = self._navigate(document, fragment, self._display_name(target_file))
        return self._resolve_node(target, target_file, visited, depth, close_objects)


def resolve_schema(
    base_dir: Union[str, Path],
    schema_file: str,
    schema_name: str,
) -> Dict[str, Any]:
    """Resolve one schema with a throwaway resolver (no shared cache)."""
    return SchemaResolver(base_dir).resolve(schema_file, schema_name)
