"""Sandbox session endpoints."""

import asyncio
import logging
import re
from typing import Any

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from backend.web.core.config import GITHUB_API_URL, PREVIEW_DOMAIN, PREVIEW_SCHEME
from backend.web.models.requests import CreateSandboxRequest
from backend.web.services.repo_service import GitHubClient, resolve_repository
from proxy.address import format_sandbox_address
from sandbox.errors import RepositoryError, SandboxError, SessionNotFoundError, ValidationError, error_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sandbox", tags=["sandbox"])

_GITHUB_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def _validate_create(payload: CreateSandboxRequest) -> tuple[str, str, str]:
    values = {
        "owner": (payload.owner or "").strip(),
        "repo": (payload.repo or "").strip(),
        "sessionId": (payload.session_id or "").strip(),
    }
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])
    for name in ("owner", "repo"):
        if not _GITHUB_NAME.match(values[name]):
            raise ValidationError(f"Invalid {name}: {values[name]!r}", field=name)
    return values["owner"], values["repo"], values["sessionId"]


@router.post("/create")
async def create_sandbox(payload: CreateSandboxRequest, request: Request) -> Any:
    """Create a sandbox session, or return the live one for this sessionId."""
    owner, repo, session_id = _validate_create(payload)
    branch = (payload.branch or "").strip() or None

    client: GitHubClient = request.app.state.repo_client
    scoped = GitHubClient(GITHUB_API_URL, payload.token) if payload.token else None
    try:
        metadata = await asyncio.to_thread(resolve_repository, scoped or client, owner, repo)
    except RepositoryError as e:
        raise ValidationError(f"Repository not found: {owner}/{repo}", field="repo") from e
    finally:
        if scoped:
            scoped.close()

    clone_url = None
    if metadata:
        branch = branch or metadata.default_branch
        clone_url = metadata.clone_url

    try:
        session = await request.app.state.sandbox_manager.create_or_reuse(
            session_id, owner, repo, branch=branch, clone_url=clone_url,
        )
    except SandboxError:
        raise
    except Exception as e:
        logger.exception("Unexpected failure creating session %s", session_id)
        return JSONResponse(error_payload(e), status_code=500)
    return session.projection()


@router.get("/{session_id}")
async def get_sandbox(session_id: str, request: Request) -> dict[str, Any]:
    session = await asyncio.to_thread(request.app.state.sandbox_manager.get_status, session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session.projection()


@router.get("/{session_id}/preview")
async def get_sandbox_preview(
    session_id: str,
    request: Request,
    port: int = Query(..., ge=1, le=65535),
) -> dict[str, Any]:
    """Proxy address that reaches ``port`` inside the session's sandbox."""
    manager = request.app.state.sandbox_manager
    session = await asyncio.to_thread(manager.get_status, session_id)
    if session is None or not session.instance_handle:
        raise SessionNotFoundError(session_id)
    host = format_sandbox_address(manager.provider.routing_id(session.instance_handle), port, PREVIEW_DOMAIN)
    return {
        "url": f"{PREVIEW_SCHEME}://{host}",
        "port": port,
        "sessionId": session_id,
        "status": session.status.value,
    }


@router.delete("/{session_id}", status_code=204)
async def delete_sandbox(session_id: str, request: Request) -> Response:
    await request.app.state.sandbox_manager.terminate(session_id)
    return Response(status_code=204)
