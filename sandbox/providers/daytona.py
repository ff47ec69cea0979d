"""
Daytona sandbox provider.

Implements SandboxProvider using Daytona's remote workspace SDK.

Key differences from Docker:
- Compute lives in Daytona's cloud; endpoints are provider-issued preview links
- The startup script is launched through a toolbox process session, not container env
- Sandbox ids are UUIDs; the proxy addresses them without hyphens
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.provider import InstanceStatus, ProvisionConfig, ProvisionResult, SandboxProvider

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "started": "ready",
    "stopped": "terminated",
    "archived": "terminated",
    "destroyed": "terminated",
    "creating": "provisioning",
    "starting": "provisioning",
    "restoring": "provisioning",
}


def _state_value(sb: Any) -> str:
    state = getattr(sb, "state", None)
    return str(getattr(state, "value", state) or "").lower()


class DaytonaProvider(SandboxProvider):
    """Daytona remote workspace provider."""

    name = "daytona"
    upstream_headers = {
        "X-Daytona-Disable-CORS": "true",
        "X-Daytona-Skip-Preview-Warning": "true",
    }

    def __init__(
        self,
        api_key: str | None,
        api_url: str = "https://app.daytona.io/api",
        target: str = "us",
        snapshot: str = "repobox-sandbox:latest",
        auto_stop_interval: int = 45,
        container_port: int = 4096,
        health_path: str = "/docs",
        client: Any | None = None,
        provider_name: str | None = None,
    ):
        if provider_name:
            self.name = provider_name
        if not api_key and client is None:
            raise ProviderUnavailableError("Daytona API key is required", self.name)
        self.api_key = api_key
        self.api_url = api_url
        self.target = target
        self.snapshot = snapshot
        self.auto_stop_interval = auto_stop_interval
        self.container_port = container_port
        self.health_path = health_path

        if client is None:
            from daytona_sdk import Daytona

            # @@@sdk-env - the SDK reads credentials from env, not from constructor kwargs across all versions
            os.environ["DAYTONA_API_KEY"] = api_key
            os.environ["DAYTONA_API_URL"] = api_url
            os.environ["DAYTONA_TARGET"] = target
            client = Daytona()
        self.client = client

    # ==================== Lifecycle ====================

    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        logger.info("Provisioning Daytona sandbox for %s/%s (snapshot=%s)", config.owner, config.repo, self.snapshot)
        try:
            sb = self.client.create(self._create_params(config))
        except Exception as e:
            raise ProvisionError(f"Failed to create Daytona sandbox: {e}", self.name) from e

        try:
            preview_url = sb.get_preview_link(self.container_port).url
            self._launch_startup(sb, config)
        except Exception as e:
            self.terminate(sb.id)
            raise ProvisionError(f"Failed to start Daytona sandbox {sb.id}: {e}", self.name) from e

        logger.info("Daytona sandbox %s created, preview %s", sb.id, preview_url)
        return ProvisionResult(instance_handle=sb.id, endpoint_url=preview_url, status="provisioning")

    def get_status(self, instance_handle: str) -> InstanceStatus:
        # @@@status-refresh - Always refetch sandbox before reading state to avoid stale cached status.
        try:
            sb = self.client.get(instance_handle)
        except Exception as e:
            return InstanceStatus(
                instance_handle=instance_handle,
                status="error",
                error=f"Failed to get workspace status: {e}",
            )

        state = _state_value(sb)
        status = _STATE_MAP.get(state, "error")
        url = None
        if status == "ready":
            try:
                url = sb.get_preview_link(self.container_port).url
            except Exception as e:
                return InstanceStatus(instance_handle=instance_handle, status="error", error=str(e))
        return InstanceStatus(
            instance_handle=instance_handle,
            status=status,
            endpoint_url=url,
            error=None if status != "error" else f"Unexpected Daytona state: {state or 'unknown'}",
            metadata={"state": state},
        )

    def terminate(self, instance_handle: str) -> None:
        logger.info("Terminating Daytona sandbox %s", instance_handle)
        try:
            sb = self.client.get(instance_handle)
        except Exception as e:
            if "not found" in str(e).lower():
                return
            logger.warning("Failed to look up Daytona sandbox %s for teardown: %s", instance_handle, e)
            return
        try:
            self.client.delete(sb)
        except Exception as e:
            if "not found" not in str(e).lower():
                logger.warning("Failed to delete Daytona sandbox %s: %s", instance_handle, e)

    def health_check(self, instance_handle: str) -> bool:
        status = self.get_status(instance_handle)
        if status.status != "ready" or not status.endpoint_url:
            return False
        try:
            response = httpx.get(
                f"{status.endpoint_url.rstrip('/')}{self.health_path}",
                headers=self.upstream_headers,
                timeout=2.0,
            )
        except httpx.HTTPError:
            return False
        # Daytona's edge answers 5xx until the in-sandbox server binds its port.
        return response.status_code < 500

    # ==================== Routing ====================

    def get_preview_url(self, instance_handle: str, port: int) -> str:
        sb = self.client.get(instance_handle)
        return sb.get_preview_link(port).url

    # ==================== Internal ====================

    def _create_params(self, config: ProvisionConfig) -> Any:
        from daytona_sdk import CreateSandboxFromSnapshotParams

        return CreateSandboxFromSnapshotParams(
            snapshot=self.snapshot,
            auto_stop_interval=self.auto_stop_interval,
            public=True,
            labels={"repobox.session_id": config.session_id},
        )

    def _exec_request(self, command: str) -> Any:
        from daytona_sdk import SessionExecuteRequest

        return SessionExecuteRequest(command=command, run_async=True)

    def _launch_startup(self, sb: Any, config: ProvisionConfig) -> None:
        process_session = f"repobox-{sb.id}"
        sb.process.create_session(process_session)
        env_prefix = " ".join(f"{key}={_sh_single_quote(value)}" for key, value in config.startup_env().items())
        sb.process.execute_session_command(process_session, self._exec_request(f"{env_prefix} /startup.sh"))


def _sh_single_quote(text: str) -> str:
    # Safe single-quote for POSIX shells: abc'def -> 'abc'"'"'def'
    return "'" + text.replace("'", "'\"'\"'") + "'"
