"""Session record - one logical, user-addressable sandbox lifecycle."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sandbox.lifecycle import SessionStatus, parse_session_status


def new_instance_id(session_id: str) -> str:
    # One id per provisioning attempt; the random suffix keeps same-millisecond restarts distinct.
    return f"sb-{session_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass
class Session:
    session_id: str
    instance_id: str
    owner: str
    repo: str
    provider: str
    branch: str | None = None
    status: SessionStatus = SessionStatus.PROVISIONING
    url: str | None = None
    instance_handle: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    last_accessed_at: datetime = field(default_factory=datetime.now)
    expires_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def start(
        cls,
        *,
        session_id: str,
        owner: str,
        repo: str,
        provider: str,
        branch: str | None,
        ttl_sec: int,
    ) -> Session:
        now = datetime.now()
        return cls(
            session_id=session_id,
            instance_id=new_instance_id(session_id),
            owner=owner,
            repo=repo,
            provider=provider,
            branch=branch,
            created_at=now,
            last_accessed_at=now,
            expires_at=now + timedelta(seconds=ttl_sec),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now())

    def touch(self) -> None:
        self.last_accessed_at = datetime.now()

    def projection(self) -> dict[str, Any]:
        """View returned by the HTTP surface."""
        return {
            "id": self.instance_id,
            "sessionId": self.session_id,
            "url": self.url,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "owner": self.owner,
            "repo": self.repo,
            "branch": self.branch,
            "error": self.error_message,
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("created_at", "last_accessed_at", "expires_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        payload = dict(data)
        payload["status"] = parse_session_status(payload.get("status"))
        for key in ("created_at", "last_accessed_at", "expires_at"):
            value = payload.get(key)
            payload[key] = datetime.fromisoformat(value) if value else None
        if payload["created_at"] is None:
            payload["created_at"] = datetime.now()
        if payload["last_accessed_at"] is None:
            payload["last_accessed_at"] = payload["created_at"]
        return cls(**payload)
