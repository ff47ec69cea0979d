"""Error taxonomy shared by the orchestrator, the web backend and the proxy."""

from __future__ import annotations

from typing import Any


class SandboxError(Exception):
    """Base class for all sandbox errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SandboxError):
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ProvisionError(SandboxError):
    """Backend failed to allocate or start compute. Terminal for one creation attempt."""

    status_code = 500

    def __init__(self, message: str, provider: str):
        super().__init__(message)
        self.provider = provider

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class ProviderUnavailableError(ProvisionError):
    """Backend is not usable in this deployment at all (no daemon, no key, no host)."""

    status_code = 503


class SessionNotFoundError(SandboxError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class RoutingError(SandboxError):
    """Inbound proxy address could not be decoded."""

    status_code = 400
    kind = "routing"


class UpstreamError(SandboxError):
    """Resolved sandbox could not be reached."""

    status_code = 502
    kind = "upstream"


class RepositoryError(SandboxError):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


def error_payload(exc: Exception) -> dict[str, Any]:
    """Format any exception into the JSON error body used by every HTTP surface."""
    if isinstance(exc, SandboxError):
        payload: dict[str, Any] = {
            "error": type(exc).__name__,
            "message": str(exc),
            "statusCode": exc.status_code,
        }
        kind = getattr(exc, "kind", None)
        if kind:
            payload["kind"] = kind
        if isinstance(exc, ValidationError) and exc.field:
            payload["field"] = exc.field
        return payload
    return {
        "error": "InternalServerError",
        "message": str(exc) or "An unexpected error occurred",
        "statusCode": 500,
    }
