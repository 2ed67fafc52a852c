"""
stepflow API - FastAPI service for step-kind tool policy checks.

Endpoints:
    GET    /api/health                                - Health check
    GET    /api/policy/{step_kind}                    - Tool set of a step kind
    POST   /api/policy/tool-check                     - Check a tool invocation
    POST   /api/policy/bash-check                     - Check a shell command
    POST   /api/policy/filter-tools                   - Filter a configured tool list
    GET    /api/registries/{agent_id}/steps/{step_id} - Step definition + policy
    GET    /api/registries/{agent_id}/flows/{flow}    - Flow steps in order
"""

from .server import create_app

__all__ = [
    "create_app",
]
