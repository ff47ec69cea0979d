"""
Platform actors - one long-running actor per session key.

Each actor owns the lifecycle of its key's instance and persists its own
session record through a StateStorage, so a restarted host picks up where it
left off. Actors share one SandboxManager; the manager's single-flight rule
applies per key exactly as it does in the web backend.
"""

from __future__ import annotations

import asyncio

from sandbox.config import SessionPolicy
from sandbox.lifecycle import SessionStatus
from sandbox.manager import SandboxManager
from sandbox.provider import SandboxProvider
from sandbox.session import Session
from sandbox.state_store import StateSessionStore, StateStorage


class SandboxActor:
    def __init__(self, key: str, manager: SandboxManager):
        self.key = key
        self.manager = manager

    async def ensure(
        self,
        owner: str,
        repo: str,
        branch: str | None = None,
        clone_url: str | None = None,
    ) -> Session:
        return await self.manager.create_or_reuse(self.key, owner, repo, branch=branch, clone_url=clone_url)

    def state(self) -> Session | None:
        return self.manager.get_status(self.key)

    async def destroy(self) -> Session | None:
        return await self.manager.terminate(self.key)

    async def preview_url(self, port: int) -> str | None:
        session = self.manager.store.get(self.key)
        if session is None or session.status != SessionStatus.READY or not session.instance_handle:
            return None
        return await asyncio.to_thread(self.manager.provider.get_preview_url, session.instance_handle, port)


class ActorHost:
    """Actors over one inner provider and one state storage.

    Actors hold no state of their own beyond their key; everything durable lives
    in the storage, so handing out a fresh actor per request is safe.
    """

    def __init__(self, provider: SandboxProvider, storage: StateStorage, policy: SessionPolicy | None = None):
        self.manager = SandboxManager(provider=provider, store=StateSessionStore(storage), policy=policy)

    def actor(self, key: str) -> SandboxActor:
        return SandboxActor(key, self.manager)

    async def reap_expired(self) -> list[Session]:
        return await self.manager.reap_expired()

    def close(self) -> None:
        self.manager.close()
