"""
Abstract sandbox provider interface.

All compute backends (Docker, Daytona, platform actor) implement this interface.
The orchestrator and the proxy only ever talk to a provider through it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ProvisionConfig:
    """Startup parameters injected into one compute unit."""
    session_id: str
    instance_id: str
    owner: str
    repo: str
    branch: str | None = None
    clone_url: str | None = None

    def repo_url(self) -> str:
        return self.clone_url or f"https://github.com/{self.owner}/{self.repo}.git"

    def startup_env(self) -> dict[str, str]:
        return {
            "REPO_URL": self.repo_url(),
            "BRANCH": self.branch or "",
            "SESSION_ID": self.session_id,
        }


@dataclass
class ProvisionResult:
    instance_handle: str
    endpoint_url: str | None
    status: str  # 'provisioning', 'ready'


@dataclass
class InstanceStatus:
    """Provider-reported health of one instance."""
    instance_handle: str
    status: str  # 'provisioning', 'ready', 'terminated', 'error'
    endpoint_url: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SandboxProvider(ABC):
    """
    Abstract interface for compute providers.

    Implementations:
    - DockerProvider: local container runtime
    - DaytonaProvider: remote workspace service
    - ActorProvider: per-key platform actor that persists its own session record
    """

    name: str  # Provider identifier: 'docker', 'daytona', 'actor'

    # Extra request headers the proxy attaches when forwarding to this provider's endpoints.
    upstream_headers: dict[str, str] = {}

    # ==================== Lifecycle ====================

    @abstractmethod
    def provision(self, config: ProvisionConfig) -> ProvisionResult:
        """Allocate one compute unit and return once it is minimally reachable.

        Unrecoverable failures raise ProvisionError. Not required to dedupe.
        """

    @abstractmethod
    def get_status(self, instance_handle: str) -> InstanceStatus:
        """Side-effect-free probe. Reports 'error' instead of raising for unknown instances."""

    @abstractmethod
    def terminate(self, instance_handle: str) -> None:
        """Best-effort teardown. Terminating an absent instance is not an error."""

    @abstractmethod
    def health_check(self, instance_handle: str) -> bool:
        """Cheap reachability probe of the exposed endpoint."""

    # ==================== Routing ====================

    @abstractmethod
    def get_preview_url(self, instance_handle: str, port: int) -> str:
        """Resolve the externally reachable URL of ``port`` on an instance."""

    def routing_id(self, instance_handle: str) -> str:
        """DNS-safe rendering of an instance handle, used in proxy subdomains."""
        return instance_handle.replace("-", "").lower()

    def close(self) -> None:
        """Release client resources. Default: no-op."""
        pass
