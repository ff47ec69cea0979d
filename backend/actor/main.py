"""Repobox Actor Host - FastAPI Application.

Serves the per-key platform actors that the ``actor`` sandbox provider talks to.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from sandbox import SandboxConfig, create_provider
from sandbox.actor import ActorHost
from sandbox.errors import SandboxError, SessionNotFoundError, error_payload
from sandbox.logging_config import configure_logging
from sandbox.state_store import SQLiteStateStorage

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8787


class CreateActorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner: str
    repo: str
    branch: str | None = None
    clone_url: str | None = Field(default=None, alias="cloneUrl")


def init_actor_host() -> ActorHost:
    config = SandboxConfig.load()
    if config.provider == "actor":
        # an actor host drives real compute; it never points at another actor host
        config = config.model_copy(update={"provider": "docker"})
    provider = create_provider(config)
    storage = SQLiteStateStorage()
    logger.info("Actor host ready: %s", config.summary())
    return ActorHost(provider=provider, storage=storage, policy=config.policy)


async def actor_reaper_loop(app_obj: FastAPI) -> None:
    host: ActorHost = app_obj.state.actor_host
    while True:
        await asyncio.sleep(host.manager.policy.sweep_interval_sec)
        try:
            removed = await host.reap_expired()
            if removed:
                logger.info("Reaped %d expired actor session(s)", len(removed))
        except Exception:
            logger.exception("Actor reaper pass failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.actor_host = init_actor_host()
    task = asyncio.create_task(actor_reaper_loop(app))
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        app.state.actor_host.close()


app = FastAPI(title="Repobox Actor Host", lifespan=lifespan)


@app.exception_handler(SandboxError)
async def sandbox_error_handler(request: Request, exc: SandboxError) -> JSONResponse:
    return JSONResponse(error_payload(exc), status_code=exc.status_code)


@app.post("/actors/{key}")
async def create_actor(key: str, payload: CreateActorRequest, request: Request) -> dict[str, Any]:
    actor = request.app.state.actor_host.actor(key)
    session = await actor.ensure(payload.owner, payload.repo, branch=payload.branch, clone_url=payload.clone_url)
    return session.projection()


@app.get("/actors/{key}")
async def get_actor(key: str, request: Request) -> dict[str, Any]:
    session = await asyncio.to_thread(request.app.state.actor_host.actor(key).state)
    if session is None:
        raise SessionNotFoundError(key)
    return session.projection()


@app.delete("/actors/{key}", status_code=204)
async def delete_actor(key: str, request: Request) -> Response:
    await request.app.state.actor_host.actor(key).destroy()
    return Response(status_code=204)


@app.get("/actors/{key}/preview")
async def get_actor_preview(key: str, request: Request, port: int = Query(..., ge=1, le=65535)) -> dict[str, Any]:
    url = await request.app.state.actor_host.actor(key).preview_url(port)
    if url is None:
        raise SessionNotFoundError(key)
    return {"url": url, "port": port}


if __name__ == "__main__":
    uvicorn.run(
        "backend.actor.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("ACTOR_PORT") or DEFAULT_PORT),
    )
