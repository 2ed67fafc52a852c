"""Serialize step registries back to their JSON document form."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from .types import StepRegistry, registry_to_dict

logger = logging.getLogger(__name__)


def serialize_registry(registry: StepRegistry, pretty: bool = True) -> str:
    """Serialize a registry to a JSON string (2-space indent when pretty)."""
    data = registry_to_dict(registry)
    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False)
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def save_step_registry(registry: StepRegistry, path: Union[str, Path]) -> Path:
    """Write a registry to ``path`` with a trailing newline."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_registry(registry) + "\n", encoding="utf-8")
    logger.debug("Saved step registry '%s' to %s", registry.agent_id, path)
    return path
