"""
Modular route handlers for the stepflow API.

Route modules:
    - policy: tool set lookup and tool / command / tool-list checks
    - registry: step and flow lookup over cached registries
"""

from .policy import router as policy_router
from .registry import router as registry_router

__all__ = [
    "policy_router",
    "registry_router",
]
