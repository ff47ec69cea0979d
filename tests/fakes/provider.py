"""In-memory SandboxProvider used across orchestrator, proxy and HTTP tests."""

from __future__ import annotations

import threading
from collections.abc import Callable

from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.provider import InstanceStatus, ProvisionConfig, ProvisionResult, SandboxProvider


class FakeProvider(SandboxProvider):
    name = "fake"

    def __init__(
        self,
        *,
        failures: int = 0,
        unavailable: bool = False,
        unhealthy_checks: int = 0,
        instance_status: str = "ready",
        fail_terminate: bool = False,
        gate: threading.Event | None = None,
        on_provision: Callable[[ProvisionConfig], None] | None = None,
    ):
        self.failures = failures
        self.unavailable = unavailable
        self.unhealthy_checks = unhealthy_checks
        self.instance_status = instance_status
        self.fail_terminate = fail_terminate
        self.gate = gate
        self.on_provision = on_provision

        self.started = threading.Event()
        self.instances: dict[str, ProvisionConfig] = {}
        self.provision_calls: list[ProvisionConfig] = []
        self.terminated: list[str] = []
        self.preview_calls: list[tuple[str, int]] = []
        self.health_calls = 0
        self.closed = False

    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        self.provision_calls.append(config)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.unavailable:
            raise ProviderUnavailableError("backend not configured", self.name)
        if self.failures > 0:
            self.failures -= 1
            raise ProvisionError("allocation failed", self.name)
        if self.on_provision is not None:
            self.on_provision(config)
        handle = f"fake-{len(self.provision_calls)}"
        self.instances[handle] = config
        return ProvisionResult(instance_handle=handle, endpoint_url=f"http://{handle}.local:4096", status="provisioning")

    def get_status(self, instance_handle: str) -> InstanceStatus:
        if instance_handle not in self.instances:
            return InstanceStatus(instance_handle=instance_handle, status="error", error="not found")
        return InstanceStatus(
            instance_handle=instance_handle,
            status=self.instance_status,
            endpoint_url=f"http://{instance_handle}.local:4096",
            error="crashed" if self.instance_status == "error" else None,
        )

    def terminate(self, instance_handle: str) -> None:
        self.terminated.append(instance_handle)
        self.instances.pop(instance_handle, None)
        if self.fail_terminate:
            raise RuntimeError("teardown exploded")

    def health_check(self, instance_handle: str) -> bool:
        self.health_calls += 1
        return self.health_calls > self.unhealthy_checks

    def get_preview_url(self, instance_handle: str, port: int) -> str:
        self.preview_calls.append((instance_handle, port))
        return f"http://{instance_handle}.local:{port}"

    def close(self) -> None:
        self.closed = True


class KeyedProvider(FakeProvider):
    """Hands out one instance per session id and returns the live one on repeat calls.

    Call ``n`` blocks on ``gates[n]`` after setting ``entered[n]``, so tests can
    choose which of several overlapping provisions finishes first.
    """

    def __init__(self, calls: int = 2, **kwargs):
        super().__init__(**kwargs)
        self.entered = [threading.Event() for _ in range(calls)]
        self.gates = [threading.Event() for _ in range(calls)]

    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        index = len(self.provision_calls)
        self.provision_calls.append(config)
        self.entered[index].set()
        self.gates[index].wait(5)
        handle = config.session_id
        self.instances.setdefault(handle, config)
        return ProvisionResult(instance_handle=handle, endpoint_url=f"http://{handle}.local:4096", status="provisioning")
