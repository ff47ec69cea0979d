"""Sandbox configuration.

Priority: env vars > ~/.repobox/sandbox.json (or $REPOBOX_CONFIG) > defaults
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

ProviderName = Literal["docker", "daytona", "actor"]

DEFAULT_CONFIG_PATH = Path.home() / ".repobox" / "sandbox.json"


class DockerConfig(BaseModel):
    image: str = Field(default="repobox-sandbox:latest", min_length=1)
    network: str = "bridge"
    memory_limit: str = Field(default="2g", pattern=r"^\d+[kmgKMG]$")
    cpu_limit: float = Field(default=1.0, gt=0)
    container_port: int = Field(default=4096, ge=1, le=65535)
    command_timeout_sec: float = Field(default=60.0, gt=0)


class DaytonaConfig(BaseModel):
    api_key: str | None = None
    api_url: str = "https://app.daytona.io/api"
    target: str = "us"
    snapshot: str = "repobox-sandbox:latest"
    auto_stop_interval: int = Field(default=45, ge=0)
    container_port: int = Field(default=4096, ge=1, le=65535)
    health_path: str = "/docs"


class ActorConfig(BaseModel):
    base_url: str = "http://localhost:8787"
    timeout_sec: float = Field(default=60.0, gt=0)


class SessionPolicy(BaseModel):
    session_ttl_sec: int = Field(default=3600, gt=0)
    ready_poll_attempts: int = Field(default=15, ge=0)
    ready_poll_interval_sec: float = Field(default=1.0, ge=0)
    provision_attempts: int = Field(default=2, ge=1)
    provision_retry_delay_sec: float = Field(default=2.0, ge=0)
    sweep_interval_sec: float = Field(default=60.0, gt=0)


class SandboxConfig(BaseModel):
    provider: ProviderName = "docker"
    docker: DockerConfig = Field(default_factory=DockerConfig)
    daytona: DaytonaConfig = Field(default_factory=DaytonaConfig)
    actor: ActorConfig = Field(default_factory=ActorConfig)
    policy: SessionPolicy = Field(default_factory=SessionPolicy)

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @classmethod
    def load(cls, path: Path | None = None) -> SandboxConfig:
        config_path = path or Path(os.getenv("REPOBOX_CONFIG") or DEFAULT_CONFIG_PATH)
        data: dict = {}
        if config_path.exists():
            data = json.loads(config_path.read_text())
        _apply_env_overrides(data)
        return cls(**data)

    def save(self, path: Path | None = None) -> Path:
        config_path = path or DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        # api keys stay in the environment, never on disk
        data = self.model_dump(exclude={"daytona": {"api_key"}})
        config_path.write_text(json.dumps(data, indent=2))
        return config_path

    def summary(self) -> dict:
        """Loggable view without secrets."""
        return {
            "provider": self.provider,
            "session_ttl_sec": self.policy.session_ttl_sec,
            "ready_poll_attempts": self.policy.ready_poll_attempts,
            "provision_attempts": self.policy.provision_attempts,
        }


# env var -> (section, key); section None means top level
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "SANDBOX_PROVIDER": (None, "provider"),
    "DOCKER_IMAGE": ("docker", "image"),
    "DOCKER_NETWORK": ("docker", "network"),
    "DOCKER_MEMORY_LIMIT": ("docker", "memory_limit"),
    "DOCKER_CPU_LIMIT": ("docker", "cpu_limit"),
    "DAYTONA_API_KEY": ("daytona", "api_key"),
    "DAYTONA_API_URL": ("daytona", "api_url"),
    "DAYTONA_TARGET": ("daytona", "target"),
    "DAYTONA_SNAPSHOT": ("daytona", "snapshot"),
    "ACTOR_BASE_URL": ("actor", "base_url"),
    "SESSION_TIMEOUT": ("policy", "session_ttl_sec"),
}


def _apply_env_overrides(data: dict) -> None:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})[key] = value
