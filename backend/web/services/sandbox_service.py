"""Sandbox management service."""

import logging

from backend.web.core.config import SESSION_STORE
from sandbox import SandboxConfig, SandboxManager, create_provider, create_session_store

logger = logging.getLogger(__name__)


def init_sandbox_manager(config: SandboxConfig | None = None) -> SandboxManager:
    """Build the process-wide orchestrator: one provider variant, one session store."""
    config = config or SandboxConfig.load()
    provider = create_provider(config)
    store = create_session_store(SESSION_STORE)
    logger.info("Sandbox manager ready: %s (store=%s)", config.summary(), SESSION_STORE)
    return SandboxManager(provider=provider, store=store, policy=config.policy)
