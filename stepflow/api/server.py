"""
FastAPI server exposing the step-kind tool policy and registry lookups.

Lets an agent driver written in another process (or language) ask the same
questions the in-process API answers: which tools a step kind may use, and
whether a given tool call or shell command is a boundary action.

Usage:
    from stepflow.api import create_app

    app = create_app(agents_dir="agents")
    uvicorn.run(app, port=5002)

Or from the command line:
    stepflow-api --agents-dir agents --port 5002

API Structure:
    /api/health                                - Health check
    /api/policy/{step_kind}                    - Tool set of a step kind
    /api/policy/tool-check                     - Check a tool invocation
    /api/policy/bash-check                     - Check a shell command
    /api/policy/filter-tools                   - Filter a configured tool list
    /api/registries/{agent_id}/steps/{step_id} - Step definition + policy
    /api/registries/{agent_id}/flows/{flow}    - Flow steps in order
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from fastapi import FastAPI, Request

from stepflow.config.runtime_config import get_agents_dir

from .routes import policy_router, registry_router
from .schema import HealthStatus

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(agents_dir: Optional[Union[str, Path]] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        agents_dir: Directory holding ``<agent_id>/registry.json``. Defaults
            to the runtime config.

    Returns:
        Configured FastAPI application with its own registry cache.
    """
    app = FastAPI(
        title="stepflow API",
        description="Step-kind tool policy checks and step registry lookups for agent drivers.",
        version=API_VERSION,
    )
    app.state.agents_dir = Path(agents_dir) if agents_dir is not None else get_agents_dir()
    app.state.registry_cache = {}

    app.include_router(policy_router, prefix="/api")
    app.include_router(registry_router, prefix="/api")
    logger.info("stepflow API created (agents_dir=%s)", app.state.agents_dir)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    @app.get("/api/health", response_model=HealthStatus)
    async def health():
        """Health check."""
        return HealthStatus(
            status="ok",
            version=API_VERSION,
            timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            agents_dir=str(app.state.agents_dir),
            cached_registries=sorted(app.state.registry_cache.keys()),
        )

    return app


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="stepflow policy API server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5002, help="Port to bind to")
    parser.add_argument("--agents-dir", help="Directory holding <agent_id>/registry.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    app = create_app(agents_dir=args.agents_dir)
    print(f"Starting stepflow API server at http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
