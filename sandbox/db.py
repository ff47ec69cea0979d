"""Shared sandbox DB constants."""

import os
from pathlib import Path

# @@@env-at-import - This is evaluated at import time. Export REPOBOX_DB_PATH before process start.
DEFAULT_DB_PATH = Path(os.getenv("REPOBOX_DB_PATH") or (Path.home() / ".repobox" / "sessions.db"))
DEFAULT_ACTOR_DB_PATH = Path(os.getenv("REPOBOX_ACTOR_DB_PATH") or (Path.home() / ".repobox" / "actors.db"))
