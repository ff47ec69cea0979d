"""
Docker sandbox provider.

Implements SandboxProvider using local Docker containers.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time

import httpx

from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.provider import InstanceStatus, ProvisionConfig, ProvisionResult, SandboxProvider

logger = logging.getLogger(__name__)

CONTAINER_PREFIX = "repobox-"


def parse_host_port(port_output: str, default: str) -> str:
    """Extract the host port from ``docker port`` output.

    Format: "0.0.0.0:12345\\n[::]:12345" -> "12345"
    """
    first_line = port_output.split("\n")[0].strip()
    host_port = first_line.split(":")[-1].strip()
    return host_port or default


class DockerProvider(SandboxProvider):
    """
    Local Docker sandbox provider.

    Notes:
    - Requires Docker CLI available on host.
    - Uses one container per provisioning attempt, named after the instance id.
    - The container's startup script clones REPO_URL@BRANCH and serves on container_port.
    """

    name = "docker"

    def __init__(
        self,
        image: str,
        network: str = "bridge",
        memory_limit: str = "2g",
        cpu_limit: float = 1.0,
        container_port: int = 4096,
        command_timeout_sec: float = 60.0,
        start_timeout_sec: float = 5.0,
        provider_name: str | None = None,
    ):
        if provider_name:
            self.name = provider_name
        self.image = image
        self.network = network
        self.memory_limit = memory_limit
        self.cpu_limit = cpu_limit
        self.container_port = container_port
        self.command_timeout_sec = command_timeout_sec
        self.start_timeout_sec = start_timeout_sec

    # ==================== Lifecycle ====================

    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        container_name = f"{CONTAINER_PREFIX}{config.instance_id}"
        logger.info("Provisioning docker container %s for %s/%s (branch=%s)",
                    container_name, config.owner, config.repo, config.branch or "default")

        try:
            self._run(["docker", "version", "--format", "{{.Server.Version}}"])
        except RuntimeError as e:
            raise ProviderUnavailableError(
                "Docker is not available. Please ensure Docker is installed and running.", self.name
            ) from e

        try:
            self._ensure_image()
            cmd = [
                "docker",
                "run",
                "-d",
                "--name",
                container_name,
                "--label",
                f"repobox.session_id={config.session_id}",
                "--network",
                self.network,
            ]
            for key, value in config.startup_env().items():
                cmd.extend(["-e", f"{key}={value}"])
            cmd.extend([
                "-p",
                str(self.container_port),
                "--memory",
                self.memory_limit,
                f"--cpus={self.cpu_limit}",
                self.image,
            ])
            container_id = self._run(cmd).stdout.strip()
            if not container_id:
                raise RuntimeError("docker run returned no container id")

            url = self.get_preview_url(container_id, self.container_port)
            self._wait_for_running(container_id)
        except (RuntimeError, OSError) as e:
            # @@@half-created-cleanup - never leave a container behind for a failed attempt
            self.terminate(container_name)
            raise ProvisionError(f"Failed to provision Docker container: {e}", self.name) from e

        logger.info("Docker container %s started at %s", container_id[:12], url)
        return ProvisionResult(instance_handle=container_id, endpoint_url=url, status="ready")

    def get_status(self, instance_handle: str) -> InstanceStatus:
        try:
            result = self._run(["docker", "inspect", "--format", "{{json .}}", instance_handle])
            data = json.loads(result.stdout)
        except (RuntimeError, ValueError) as e:
            return InstanceStatus(
                instance_handle=instance_handle,
                status="error",
                error=f"Failed to get container status: {e}",
            )

        state = data.get("State") or {}
        if not state.get("Running"):
            return InstanceStatus(
                instance_handle=instance_handle,
                status="terminated",
                error=f"Container exited with code {state.get('ExitCode')}",
            )
        if state.get("Paused"):
            return InstanceStatus(instance_handle=instance_handle, status="error", error="Container is paused")

        ports = ((data.get("NetworkSettings") or {}).get("Ports") or {}).get(f"{self.container_port}/tcp") or []
        host_port = str((ports[0] or {}).get("HostPort") if ports else self.container_port).strip()
        return InstanceStatus(
            instance_handle=instance_handle,
            status="ready",
            endpoint_url=f"http://127.0.0.1:{host_port}",
        )

    def terminate(self, instance_handle: str) -> None:
        logger.info("Terminating docker container %s", instance_handle[:24])
        for cmd, timeout in (
            (["docker", "stop", "-t", "10", instance_handle], 30.0),
            (["docker", "rm", "-f", instance_handle], None),
        ):
            try:
                result = self._run(cmd, check=False, timeout=timeout)
            except RuntimeError as e:
                logger.warning("%s failed for %s: %s", " ".join(cmd[:2]), instance_handle, e)
                continue
            # "No such container" lands here; an absent instance is already terminated.
            if result.returncode != 0:
                logger.debug("%s %s: %s", " ".join(cmd[:2]), instance_handle, result.stderr.strip())

    def health_check(self, instance_handle: str) -> bool:
        status = self.get_status(instance_handle)
        if status.status != "ready" or not status.endpoint_url:
            return False
        try:
            response = httpx.get(f"{status.endpoint_url}/health", timeout=2.0)
        except httpx.HTTPError:
            return False
        # A 404 still proves the dev server is listening; 5xx means it is not up yet.
        return response.status_code < 500

    # ==================== Routing ====================

    def get_preview_url(self, instance_handle: str, port: int) -> str:
        result = self._run(["docker", "port", instance_handle, str(port)])
        host_port = parse_host_port(result.stdout, default=str(port))
        # 127.0.0.1 instead of localhost avoids IPv6 resolution surprises
        return f"http://127.0.0.1:{host_port}"

    # ==================== Internal ====================

    def _ensure_image(self) -> None:
        inspect = self._run(["docker", "image", "inspect", self.image], check=False)
        if inspect.returncode != 0:
            logger.info("Pulling docker image %s", self.image)
            self._run(["docker", "pull", self.image], timeout=max(self.command_timeout_sec, 600))

    def _wait_for_running(self, container_id: str) -> None:
        deadline = time.monotonic() + self.start_timeout_sec
        while time.monotonic() < deadline:
            if self.get_status(container_id).status == "ready":
                return
            time.sleep(0.5)
        raise RuntimeError("Container failed to start within timeout")

    def _run(
        self,
        cmd: list[str],
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        effective_timeout = timeout if timeout is not None else self.command_timeout_sec
        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=True,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeError(f"Docker command timed out after {effective_timeout}s: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise RuntimeError("Docker CLI not found on PATH") from exc
        if check and result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or result.stdout.strip() or "Docker command failed")
        return result
