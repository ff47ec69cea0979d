"""Repobox Web Backend - FastAPI Application."""

import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.web.core.config import ALLOWED_ORIGINS, DEFAULT_PORT
from backend.web.core.lifespan import lifespan
from backend.web.routers import health, sandbox
from sandbox.errors import SandboxError, error_payload

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(title="Repobox Web Backend", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SandboxError)
async def sandbox_error_handler(request: Request, exc: SandboxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(error_payload(exc), status_code=exc.status_code)


# Include routers
app.include_router(health.router)
app.include_router(sandbox.router)


def _resolve_port() -> int:
    """Resolve backend port: PORT env var > default 3001."""
    port = os.environ.get("PORT")
    return int(port) if port else DEFAULT_PORT


if __name__ == "__main__":
    # @@@module-launch-target - Package-qualified target keeps module launch (`python -m backend.web.main`) import-safe.
    uvicorn.run("backend.web.main:app", host=os.environ.get("HOST", "0.0.0.0"), port=_resolve_port())
