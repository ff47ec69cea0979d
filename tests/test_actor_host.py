"""Actor host HTTP surface over an in-memory provider and state storage."""

import pytest
from fastapi.testclient import TestClient

from backend.actor import main as actor_main
from sandbox.actor import ActorHost
from sandbox.config import SessionPolicy
from sandbox.state_store import InMemoryStateStorage, SQLiteStateStorage
from tests.fakes.provider import FakeProvider


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(monkeypatch, provider):
    host = ActorHost(provider=provider, storage=InMemoryStateStorage(), policy=SessionPolicy(ready_poll_interval_sec=0))
    monkeypatch.setattr(actor_main, "init_actor_host", lambda: host)
    with TestClient(actor_main.app) as c:
        yield c


def test_create_get_preview_delete(client, provider):
    created = client.post("/actors/s1", json={"owner": "octocat", "repo": "hello-world"})
    assert created.status_code == 200
    body = created.json()
    assert body["status"] == "ready"
    assert body["sessionId"] == "s1"

    again = client.post("/actors/s1", json={"owner": "octocat", "repo": "hello-world"})
    assert again.json()["id"] == body["id"]
    assert len(provider.provision_calls) == 1

    fetched = client.get("/actors/s1")
    assert fetched.status_code == 200
    assert fetched.json()["url"] == body["url"]

    preview = client.get("/actors/s1/preview", params={"port": 3000})
    assert preview.status_code == 200
    assert preview.json()["url"] == "http://fake-1.local:3000"

    assert client.delete("/actors/s1").status_code == 204
    assert client.delete("/actors/s1").status_code == 204
    assert client.get("/actors/s1").status_code == 404
    assert provider.terminated == ["fake-1"]


def test_unknown_actor_is_404(client):
    assert client.get("/actors/nope").status_code == 404
    assert client.get("/actors/nope/preview", params={"port": 3000}).status_code == 404


def test_unavailable_inner_provider_answers_503(monkeypatch):
    host = ActorHost(provider=FakeProvider(unavailable=True), storage=InMemoryStateStorage())
    monkeypatch.setattr(actor_main, "init_actor_host", lambda: host)
    with TestClient(actor_main.app) as c:
        resp = c.post("/actors/s1", json={"owner": "octocat", "repo": "hello-world"})
    assert resp.status_code == 503
    assert resp.json()["error"] == "ProviderUnavailableError"


@pytest.mark.asyncio
async def test_actor_state_survives_host_restart(tmp_path):
    db_path = tmp_path / "actors.db"
    provider = FakeProvider()

    first = ActorHost(provider=provider, storage=SQLiteStateStorage(db_path), policy=SessionPolicy(ready_poll_interval_sec=0))
    created = await first.actor("s1").ensure("octocat", "hello-world")
    first.manager.store.close()

    second = ActorHost(provider=provider, storage=SQLiteStateStorage(db_path))
    try:
        restored = second.actor("s1").state()
        assert restored.instance_id == created.instance_id
        assert restored.status == created.status
        reused = await second.actor("s1").ensure("octocat", "hello-world")
        assert reused.instance_id == created.instance_id
        assert len(provider.provision_calls) == 1
    finally:
        second.close()
