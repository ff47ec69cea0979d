"""Application lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.web.core.config import GITHUB_API_URL, GITHUB_TOKEN
from backend.web.services import sandbox_service
from backend.web.services.idle_reaper import expiry_reaper_loop
from backend.web.services.repo_service import GitHubClient
from sandbox.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown."""
    configure_logging()

    # Initialize app state
    app.state.sandbox_manager = sandbox_service.init_sandbox_manager()
    app.state.repo_client = GitHubClient(GITHUB_API_URL, GITHUB_TOKEN)
    app.state.expiry_reaper_task: asyncio.Task | None = None

    try:
        # Start expiry reaper background task
        app.state.expiry_reaper_task = asyncio.create_task(expiry_reaper_loop(app))
        yield
    finally:
        # Cleanup: stop expiry reaper
        task = app.state.expiry_reaper_task
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Cleanup: flush sessions, release provider clients
        app.state.repo_client.close()
        try:
            app.state.sandbox_manager.close()
        except Exception:
            logger.warning("Sandbox manager cleanup failed", exc_info=True)
