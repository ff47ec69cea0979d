"""Lifecycle state machine contract for sandbox sessions.

Fail-loud policy:
- Invalid state strings raise immediately.
- Illegal transitions raise immediately.
"""

from __future__ import annotations

from enum import StrEnum


class SessionStatus(StrEnum):
    PROVISIONING = "provisioning"
    CLONING = "cloning"
    STARTING = "starting"
    READY = "ready"
    ERROR = "error"
    TERMINATED = "terminated"


# ready/error accept a fresh creation request; terminated starts a new lifecycle.
REUSABLE_STATES = frozenset({SessionStatus.PROVISIONING, SessionStatus.CLONING, SessionStatus.STARTING, SessionStatus.READY})
IN_FLIGHT_STATES = frozenset({SessionStatus.PROVISIONING, SessionStatus.CLONING, SessionStatus.STARTING})

_ALLOWED: set[tuple[SessionStatus, SessionStatus]] = {
    (SessionStatus.PROVISIONING, SessionStatus.CLONING),
    (SessionStatus.CLONING, SessionStatus.STARTING),
    (SessionStatus.STARTING, SessionStatus.READY),
    (SessionStatus.PROVISIONING, SessionStatus.ERROR),
    (SessionStatus.CLONING, SessionStatus.ERROR),
    (SessionStatus.STARTING, SessionStatus.ERROR),
    (SessionStatus.PROVISIONING, SessionStatus.TERMINATED),
    (SessionStatus.CLONING, SessionStatus.TERMINATED),
    (SessionStatus.STARTING, SessionStatus.TERMINATED),
    (SessionStatus.READY, SessionStatus.TERMINATED),
    (SessionStatus.ERROR, SessionStatus.TERMINATED),
}


def parse_session_status(value: str | None) -> SessionStatus:
    if value is None:
        raise RuntimeError("Session status is required")
    try:
        return SessionStatus(value)
    except ValueError as e:
        raise RuntimeError(f"Invalid session status: {value}") from e


def assert_session_transition(
    current: SessionStatus | None,
    target: SessionStatus,
    *,
    reason: str,
) -> None:
    if current is None:
        if target != SessionStatus.PROVISIONING:
            raise RuntimeError(f"Illegal session transition: <new> -> {target} ({reason})")
        return
    if current == target:
        return
    if (current, target) not in _ALLOWED:
        raise RuntimeError(f"Illegal session transition: {current} -> {target} ({reason})")
