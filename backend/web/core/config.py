"""Configuration constants for the repobox web backend."""

import os

# Session store
SESSION_STORE = os.environ.get("REPOBOX_STORE", "memory").lower()

# Repository metadata
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")
GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN") or None

# CORS
ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

# Server
DEFAULT_PORT = 3001

# Preview addresses handed to clients; must match the proxy's domain (host:port allowed)
PREVIEW_DOMAIN = os.environ.get("PREVIEW_DOMAIN") or os.environ.get("PROXY_DOMAIN") or "localhost:3002"
PREVIEW_SCHEME = os.environ.get("PREVIEW_SCHEME", "http")
