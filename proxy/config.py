"""Proxy configuration. Priority: env vars > defaults."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class ProxyConfig(BaseModel):
    domain: str = "localhost"
    cache_ttl_sec: float = Field(default=300.0, gt=0)
    sweep_interval_sec: float = Field(default=60.0, gt=0)
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = Field(default=3002, ge=1, le=65535)

    @classmethod
    def from_env(cls) -> ProxyConfig:
        data: dict = {}
        if os.getenv("PROXY_DOMAIN"):
            data["domain"] = os.environ["PROXY_DOMAIN"]
        if os.getenv("CACHE_TTL"):
            # milliseconds, as the deployment manifests express it
            data["cache_ttl_sec"] = int(os.environ["CACHE_TTL"]) / 1000
        if os.getenv("ALLOWED_ORIGINS"):
            data["allowed_origins"] = [o.strip() for o in os.environ["ALLOWED_ORIGINS"].split(",") if o.strip()]
        if os.getenv("HOST"):
            data["host"] = os.environ["HOST"]
        if os.getenv("PORT"):
            data["port"] = int(os.environ["PORT"])
        return cls(**data)
