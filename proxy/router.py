"""Forwarding routes: decode the host, resolve the upstream, relay bytes both ways.

No proxy-side timeout applies to either direction; long-lived event streams and
websocket sessions stay open as long as both ends keep them open.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import httpx
import websockets
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from proxy.address import parse_sandbox_address
from sandbox.errors import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Handshake headers that websockets.connect generates itself.
_WS_HANDSHAKE = frozenset({
    "host",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "sec-websocket-accept",
}) | HOP_BY_HOP


def cors_headers(origin: str | None, allowed_origins: list[str]) -> dict[str, str]:
    if "*" in allowed_origins:
        allow = "*"
    elif origin and origin in allowed_origins:
        allow = origin
    else:
        allow = allowed_origins[0] if allowed_origins else "*"
    return {
        "Access-Control-Allow-Origin": allow,
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }


def forward_headers(request: Request, provider_headers: dict[str, str]) -> dict[str, str]:
    headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP and k.lower() != "host"}

    client_ip = request.client.host if request.client else ""
    prior = request.headers.get("x-forwarded-for")
    headers["x-forwarded-for"] = f"{prior}, {client_ip}" if prior else client_ip
    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme

    headers.update(provider_headers)

    # @@@sse-passthrough - upstream dev servers only stream when asked explicitly
    if "text/event-stream" in request.headers.get("accept", ""):
        headers["accept"] = "text/event-stream"
        headers["cache-control"] = "no-cache"
    return headers


def response_headers(upstream: httpx.Response, sandbox_id: str, port: int) -> dict[str, str]:
    headers = {k: v for k, v in upstream.headers.items() if k.lower() not in HOP_BY_HOP}
    headers["X-Sandbox-Id"] = sandbox_id
    headers["X-Sandbox-Port"] = str(port)
    if upstream.headers.get("content-type", "").startswith("text/event-stream"):
        headers["Cache-Control"] = "no-cache"
        headers["X-Accel-Buffering"] = "no"
    return headers


async def resolve_upstream(app: Any, sandbox_id: str, port: int) -> str:
    try:
        return await app.state.cache.get(sandbox_id, port)
    except UpstreamError:
        raise
    except Exception as e:
        raise UpstreamError(f"Could not resolve sandbox {sandbox_id} port {port}: {e}") from e


def _target_url(base: str, path: str, query: str) -> str:
    url = base.rstrip("/") + path
    return f"{url}?{query}" if query else url


@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"])
async def proxy_http(request: Request, path: str):
    sandbox_id, port = parse_sandbox_address(request.headers.get("host", ""))
    base = await resolve_upstream(request.app, sandbox_id, port)
    target = _target_url(base, request.url.path, request.url.query)

    has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
    client: httpx.AsyncClient = request.app.state.http_client
    upstream_request = client.build_request(
        request.method,
        target,
        headers=forward_headers(request, request.app.state.provider_headers),
        content=request.stream() if has_body else None,
    )
    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TransportError as e:
        # endpoint may have moved; re-resolve on the next request
        request.app.state.cache.invalidate(sandbox_id, port)
        logger.warning("Upstream %s unreachable for %s:%d: %s", target, sandbox_id, port, e)
        raise UpstreamError(f"Sandbox {sandbox_id} port {port} is unreachable: {e}") from e

    if upstream.status_code >= 400:
        logger.warning(
            "Upstream %d for %s %s (sandbox %s:%d)",
            upstream.status_code, request.method, request.url.path, sandbox_id, port,
        )

    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        headers=response_headers(upstream, sandbox_id, port),
        background=BackgroundTask(upstream.aclose),
    )


# ==================== WebSocket relay ====================


async def _run_relay_pair(client_to_upstream: Any, upstream_to_client: Any) -> None:
    """Run both relay directions; the first to finish cancels the other."""
    tasks = [asyncio.create_task(client_to_upstream()), asyncio.create_task(upstream_to_client())]
    _done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _relay_client_to_upstream(websocket: WebSocket, upstream_ws: Any) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await upstream_ws.send(message["bytes"])
            elif message.get("text") is not None:
                await upstream_ws.send(message["text"])
    except WebSocketDisconnect:
        pass
    except websockets.ConnectionClosed as e:
        logger.debug("Upstream closed while relaying client frames: %s", e)


async def _relay_upstream_to_client(websocket: WebSocket, upstream_ws: Any) -> None:
    try:
        async for message in upstream_ws:
            if isinstance(message, bytes):
                await websocket.send_bytes(message)
            else:
                await websocket.send_text(message)
    except websockets.ConnectionClosed as e:
        logger.debug("Upstream websocket closed: %s", e)


@router.websocket("/{path:path}")
async def proxy_websocket(websocket: WebSocket, path: str):
    try:
        sandbox_id, port = parse_sandbox_address(websocket.headers.get("host", ""))
        base = await resolve_upstream(websocket.app, sandbox_id, port)
    except Exception as e:
        logger.warning("Websocket routing failed for %s: %s", websocket.headers.get("host"), e)
        await websocket.close(code=1008, reason=str(e)[:120])
        return

    query = websocket.url.query
    target = _target_url(base.replace("https://", "wss://", 1).replace("http://", "ws://", 1), websocket.url.path, query)
    headers = {k: v for k, v in websocket.headers.items() if k.lower() not in _WS_HANDSHAKE}
    headers.update(websocket.app.state.provider_headers)
    subprotocols = websocket.scope.get("subprotocols") or None

    try:
        upstream_ws = await websockets.connect(
            target,
            additional_headers=headers,
            subprotocols=subprotocols,
            max_size=None,
            ping_interval=None,
            close_timeout=None,
        )
    except (OSError, websockets.WebSocketException) as e:
        websocket.app.state.cache.invalidate(sandbox_id, port)
        logger.warning("Upstream websocket %s unreachable: %s", target, e)
        await websocket.close(code=1011, reason="Sandbox unreachable")
        return

    await websocket.accept(subprotocol=upstream_ws.subprotocol)
    logger.info("Websocket relay open %s:%d%s", sandbox_id, port, websocket.url.path)
    try:
        await _run_relay_pair(
            lambda: _relay_client_to_upstream(websocket, upstream_ws),
            lambda: _relay_upstream_to_client(websocket, upstream_ws),
        )
    finally:
        with contextlib.suppress(Exception):
            await upstream_ws.close()
        with contextlib.suppress(Exception):
            await websocket.close()
