"""Sandbox provider implementations."""

from sandbox.providers.actor import ActorProvider
from sandbox.providers.docker import DockerProvider

__all__ = ["ActorProvider", "DockerProvider"]
