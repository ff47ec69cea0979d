"""
Platform actor provider.

Implements SandboxProvider by calling a co-located actor host: one long-running
actor per key owns its instance's lifecycle and persists its own
session record. Actors are keyed by the caller's per-attempt instance id, so every
lifecycle of a session id gets its own actor and its own instance handle.
"""

from __future__ import annotations

import logging

import httpx

from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.provider import InstanceStatus, ProvisionConfig, ProvisionResult, SandboxProvider

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8787"

_STATUS_MAP = {
    "ready": "ready",
    "error": "error",
    "terminated": "terminated",
    "provisioning": "provisioning",
    "cloning": "provisioning",
    "starting": "provisioning",
}


class ActorProvider(SandboxProvider):
    name = "actor"

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout_sec: float = 60.0,
        transport: httpx.BaseTransport | None = None,
        provider_name: str | None = None,
    ):
        if provider_name:
            self.name = provider_name
        self._url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self._url, timeout=timeout_sec, transport=transport)

    # ==================== Lifecycle ====================

    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        key = config.instance_id
        try:
            r = self._client.post(f"/actors/{key}", json={
                "owner": config.owner,
                "repo": config.repo,
                "branch": config.branch,
                "cloneUrl": config.clone_url,
            })
        except httpx.TransportError as e:
            raise ProviderUnavailableError(f"Actor host unreachable at {self._url}: {e}", self.name) from e

        if r.status_code == 503:
            raise ProviderUnavailableError(_error_message(r), self.name)
        if r.status_code >= 400:
            raise ProvisionError(f"Actor create failed with HTTP {r.status_code}: {_error_message(r)}", self.name)

        data = r.json()
        if data.get("status") == "error":
            raise ProvisionError(data.get("error") or "Actor reported an error", self.name)
        return ProvisionResult(
            instance_handle=key,
            endpoint_url=data.get("url"),
            status=_STATUS_MAP.get(data.get("status"), "provisioning"),
        )

    def get_status(self, instance_handle: str) -> InstanceStatus:
        try:
            r = self._client.get(f"/actors/{instance_handle}")
        except httpx.TransportError as e:
            return InstanceStatus(instance_handle=instance_handle, status="error", error=f"Actor host unreachable: {e}")
        if r.status_code == 404:
            return InstanceStatus(instance_handle=instance_handle, status="error", error="Actor session not found")
        if r.status_code >= 400:
            return InstanceStatus(instance_handle=instance_handle, status="error", error=_error_message(r))

        data = r.json()
        return InstanceStatus(
            instance_handle=instance_handle,
            status=_STATUS_MAP.get(data.get("status"), "error"),
            endpoint_url=data.get("url"),
            error=data.get("error"),
            metadata={"actor_instance_id": data.get("id")},
        )

    def terminate(self, instance_handle: str) -> None:
        try:
            r = self._client.delete(f"/actors/{instance_handle}")
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Actor teardown for %s failed: %s", instance_handle, e)

    def health_check(self, instance_handle: str) -> bool:
        return self.get_status(instance_handle).status == "ready"

    # ==================== Routing ====================

    def get_preview_url(self, instance_handle: str, port: int) -> str:
        r = self._client.get(f"/actors/{instance_handle}/preview", params={"port": port})
        r.raise_for_status()
        return r.json()["url"]

    def routing_id(self, instance_handle: str) -> str:
        # actor keys come from session ids and are already the routing key
        return instance_handle

    def close(self) -> None:
        self._client.close()


def _error_message(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or data.get("error") or data)
    return str(data)
