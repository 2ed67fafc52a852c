"""Runtime configuration for registry loading and policy logging.

Provides centralized configuration for where registries and schemas live and
how the loader behaves. Environment variables take precedence over YAML config.

Usage:
    from stepflow.config.runtime_config import get_agents_dir, get_registry_filename

    registry_path = get_agents_dir() / "iterator" / get_registry_filename()
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# Floor for the command truncation length; shorter cuts hide the matched verb
MIN_COMMAND_CHARS = 40

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH, encoding="utf-8") as f:
            _cached_config = yaml.safe_load(f) or _default_config()
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "registry": {
            "agents_dir": "agents",
            "filename": "registry.json",
            "schemas_dirname": "schemas",
            "prompts_base": ".agent/{agent_id}/prompts",
        },
        "validation": {
            "validate_intent_enums": False,
        },
        "logging": {
            "command_chars": 200,
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _section(name: str) -> Dict[str, Any]:
    section = _load_config().get(name)
    if isinstance(section, dict):
        return section
    return _default_config()[name]


def get_agents_dir() -> Path:
    """Get the directory holding per-agent registry folders.

    Precedence: STEPFLOW_AGENTS_DIR, then registry.agents_dir, then "agents".
    """
    env_value = os.environ.get("STEPFLOW_AGENTS_DIR")
    if env_value:
        return Path(env_value)
    return Path(_section("registry").get("agents_dir") or "agents")


def get_registry_filename() -> str:
    """Get the registry document filename within an agent folder."""
    env_value = os.environ.get("STEPFLOW_REGISTRY_FILENAME")
    if env_value:
        return env_value
    return _section("registry").get("filename") or "registry.json"


def get_schemas_dirname() -> str:
    """Get the default schema directory name, relative to the registry file."""
    env_value = os.environ.get("STEPFLOW_SCHEMAS_DIRNAME")
    if env_value:
        return env_value
    return _section("registry").get("schemas_dirname") or "schemas"


def get_prompts_base_template() -> str:
    """Get the default prompts base template ("{agent_id}" is substituted)."""
    return _section("registry").get("prompts_base") or ".agent/{agent_id}/prompts"


def should_validate_intent_enums() -> bool:
    """Whether loading a registry also runs the intent enum cross-check.

    Precedence: STEPFLOW_VALIDATE_INTENT_ENUMS, then
    validation.validate_intent_enums, then False.
    """
    env_value = os.environ.get("STEPFLOW_VALIDATE_INTENT_ENUMS")
    if env_value is not None:
        lowered = env_value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        logger.warning(
            "Invalid STEPFLOW_VALIDATE_INTENT_ENUMS value '%s' (expected one of %s). "
            "Falling back to config file.",
            env_value,
            ", ".join(_TRUE_VALUES + _FALSE_VALUES),
        )
    return bool(_section("validation").get("validate_intent_enums", False))


def get_log_truncation() -> int:
    """Number of command characters included in policy denial log lines."""
    raw: Any = os.environ.get("STEPFLOW_LOG_COMMAND_CHARS")
    source = "STEPFLOW_LOG_COMMAND_CHARS"
    if raw is None:
        raw = _section("logging").get("command_chars", 200)
        source = "logging.command_chars"

    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value '%s'. Using 200.", source, raw)
        return 200

    if value < MIN_COMMAND_CHARS:
        logger.warning(
            "%s value %d is below minimum %d. Clamping to %d.",
            source,
            value,
            MIN_COMMAND_CHARS,
            MIN_COMMAND_CHARS,
        )
        return MIN_COMMAND_CHARS
    return value
