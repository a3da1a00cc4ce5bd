"""
FastAPI application for the pbuild builder service.

A remote builder is the same orchestrator exposed over HTTP; delegating
builders forward whole build requests here.

Endpoints:
    GET  /health        -> liveness probe with the builder's host runtime
    POST /v1/api/build  -> BuildSpec dict in, Module dict out

Errors are reported as ``{"error": message, "kind": error.kind}`` with status
400 for malformed requests and 500 for failed builds.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from pbuild import __version__
from pbuild.build.build_spec import BuildSpec
from pbuild.build.orchestrator import BuildOrchestrator
from pbuild.daemon.client import BUILD_PATH, HEALTH_PATH
from pbuild.errors import PbuildError, ValidationError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: PbuildError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(error), "kind": error.kind})


def create_app(orchestrator: BuildOrchestrator) -> FastAPI:
    """Create the builder service application.

    Args:
        orchestrator: Orchestrator that runs the forwarded builds

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="pbuild builder",
        description="Remote Go plugin builder",
        version=__version__,
    )

    @app.get(HEALTH_PATH)
    async def health_check() -> dict[str, Any]:
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": __version__,
            "runtime": orchestrator.config.runtime.to_dict(),
        }

    @app.post(BUILD_PATH)
    async def build(request: Request) -> JSONResponse:
        """Build a forwarded BuildSpec and return the Module."""
        try:
            payload = await request.json()
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            spec = BuildSpec.from_dict(payload)
        except (ValueError, TypeError, PbuildError) as e:
            logger.warning(f"Rejected malformed build request: {e}")
            error = e if isinstance(e, PbuildError) else ValidationError(f"Malformed build request: {e}")
            return _error_response(400, error)

        logger.info(f"Building {spec.name} for {spec.go.runtime}")
        try:
            module = await run_in_threadpool(orchestrator.build, spec)
        except PbuildError as e:
            logger.error(f"Build {spec.name} failed: {e}")
            return _error_response(500, e)
        return JSONResponse(status_code=200, content=module.to_dict())

    return app
