"""Repobox Preview Proxy - FastAPI Application.

Routes ``{port}-{sandboxId}.{domain}`` to the sandbox's provider-issued preview URL.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from proxy.address import restore_uuid_format
from proxy.cache import PreviewUrlCache
from proxy.config import ProxyConfig
from proxy.router import cors_headers
from proxy.router import router as proxy_router
from sandbox import SandboxConfig, create_provider
from sandbox.errors import SandboxError, error_payload
from sandbox.logging_config import configure_logging
from sandbox.provider import SandboxProvider

logger = logging.getLogger(__name__)


async def cache_sweep_loop(app: FastAPI) -> None:
    interval = app.state.config.sweep_interval_sec
    while True:
        await asyncio.sleep(interval)
        app.state.cache.sweep()


def create_app(
    config: ProxyConfig | None = None,
    provider: SandboxProvider | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    config = config or ProxyConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        sandbox_provider = provider or create_provider(SandboxConfig.load())
        logger.info(
            "Proxy for *.%s via %s provider (cache ttl %.0fs)",
            config.domain, sandbox_provider.name, config.cache_ttl_sec,
        )

        async def resolve(sandbox_id: str, port: int) -> str:
            return await asyncio.to_thread(sandbox_provider.get_preview_url, restore_uuid_format(sandbox_id), port)

        app.state.cache = PreviewUrlCache(resolve, ttl_sec=config.cache_ttl_sec)
        app.state.provider_headers = dict(sandbox_provider.upstream_headers)
        app.state.http_client = httpx.AsyncClient(timeout=None, follow_redirects=False, transport=transport)
        app.state.sweep_task = asyncio.create_task(cache_sweep_loop(app))
        try:
            yield
        finally:
            app.state.sweep_task.cancel()
            try:
                await app.state.sweep_task
            except asyncio.CancelledError:
                pass
            await app.state.http_client.aclose()
            app.state.cache.clear()
            if provider is None:
                sandbox_provider.close()

    app = FastAPI(title="Repobox Preview Proxy", lifespan=lifespan)
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Sandbox-Id", "X-Sandbox-Port"],
    )

    @app.exception_handler(SandboxError)
    async def sandbox_error_handler(request: Request, exc: SandboxError):
        payload = error_payload(exc)
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(
            payload,
            status_code=exc.status_code,
            headers=cors_headers(request.headers.get("origin"), config.allowed_origins),
        )

    @app.get("/health")
    async def health(request: Request):
        cache: PreviewUrlCache = request.app.state.cache
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "cache": {"size": len(cache), "ttl": config.cache_ttl_sec},
        }

    @app.get("/stats")
    async def stats(request: Request):
        return request.app.state.cache.stats()

    @app.options("/{path:path}")
    async def preflight(request: Request, path: str):
        return Response(status_code=204, headers=cors_headers(request.headers.get("origin"), config.allowed_origins))

    app.include_router(proxy_router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = ProxyConfig.from_env()
    uvicorn.run("proxy.main:app", host=settings.host, port=settings.port)
