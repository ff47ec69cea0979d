"""Sandbox - session orchestration over interchangeable compute providers.

Usage:
    from sandbox import SandboxConfig, SandboxManager, create_provider, create_session_store

    config = SandboxConfig.load()
    manager = SandboxManager(
        provider=create_provider(config),
        store=create_session_store("memory"),
        policy=config.policy,
    )
    session = await manager.create_or_reuse("s1", "octocat", "hello-world")
"""

from __future__ import annotations

import os
from pathlib import Path

from sandbox.config import SandboxConfig
from sandbox.manager import SandboxManager
from sandbox.provider import SandboxProvider
from sandbox.session import Session
from sandbox.session_store import InMemorySessionStore, SessionStore


def create_provider(config: SandboxConfig) -> SandboxProvider:
    """Factory: select the provider variant once, at configuration time."""
    provider = config.provider

    if provider == "docker":
        from sandbox.providers.docker import DockerProvider

        return DockerProvider(
            image=config.docker.image,
            network=config.docker.network,
            memory_limit=config.docker.memory_limit,
            cpu_limit=config.docker.cpu_limit,
            container_port=config.docker.container_port,
            command_timeout_sec=config.docker.command_timeout_sec,
        )

    if provider == "daytona":
        from sandbox.providers.daytona import DaytonaProvider

        return DaytonaProvider(
            api_key=config.daytona.api_key or os.getenv("DAYTONA_API_KEY"),
            api_url=config.daytona.api_url,
            target=config.daytona.target,
            snapshot=config.daytona.snapshot,
            auto_stop_interval=config.daytona.auto_stop_interval,
            container_port=config.daytona.container_port,
            health_path=config.daytona.health_path,
        )

    if provider == "actor":
        from sandbox.providers.actor import ActorProvider

        return ActorProvider(base_url=config.actor.base_url, timeout_sec=config.actor.timeout_sec)

    raise ValueError(f"Unknown sandbox provider: {provider}")


def create_session_store(kind: str = "memory", db_path: Path | None = None) -> SessionStore:
    if kind == "memory":
        return InMemorySessionStore()
    if kind == "sqlite":
        from sandbox.sqlite_store import SQLiteSessionStore

        return SQLiteSessionStore(db_path=db_path)
    raise ValueError(f"Unknown session store: {kind}")


__all__ = [
    "SandboxConfig",
    "SandboxManager",
    "SandboxProvider",
    "Session",
    "SessionStore",
    "create_provider",
    "create_session_store",
]
