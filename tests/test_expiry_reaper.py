from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backend.web.services.idle_reaper import run_reaper_once
from sandbox.config import SessionPolicy
from sandbox.manager import SandboxManager
from sandbox.session_store import InMemorySessionStore
from tests.fakes.provider import FakeProvider


@pytest.mark.asyncio
async def test_reaper_pass_drops_expired_sessions_and_instances():
    provider = FakeProvider()
    manager = SandboxManager(
        provider=provider,
        store=InMemorySessionStore(),
        policy=SessionPolicy(session_ttl_sec=1, ready_poll_interval_sec=0),
    )
    session = await manager.create_or_reuse("s1", "octocat", "hello-world")
    stale = manager.store.get("s1")
    stale.expires_at = datetime.now() - timedelta(seconds=1)
    manager.store.put(stale)

    count = await run_reaper_once(SimpleNamespace(state=SimpleNamespace(sandbox_manager=manager)))

    assert count == 1
    assert manager.store.get("s1") is None
    assert provider.terminated == [session.instance_handle]
