"""ActorProvider against a mocked actor host."""

import httpx
import pytest

from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.provider import ProvisionConfig
from sandbox.providers.actor import ActorProvider


@pytest.fixture
def config():
    return ProvisionConfig(session_id="s1", instance_id="sb-s1-1", owner="octocat", repo="hello-world", branch="main")


def _provider(handler):
    return ActorProvider(base_url="http://actors.test", transport=httpx.MockTransport(handler))


def test_provision_posts_repo_coordinates(config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={"id": "sb-s1-9", "status": "ready", "url": "http://127.0.0.1:49153"})

    result = _provider(handler).provision(config)

    assert seen["path"] == "/actors/sb-s1-1"
    assert b'"owner":"octocat"' in seen["body"].replace(b" ", b"")
    assert result.instance_handle == "sb-s1-1"
    assert result.endpoint_url == "http://127.0.0.1:49153"
    assert result.status == "ready"


def test_provision_reports_actor_error_status(config):
    def handler(request):
        return httpx.Response(200, json={"status": "error", "error": "[docker] image missing"})

    with pytest.raises(ProvisionError, match="image missing") as exc:
        _provider(handler).provision(config)
    assert not isinstance(exc.value, ProviderUnavailableError)


def test_provision_503_is_unavailable(config):
    def handler(request):
        return httpx.Response(503, json={"message": "Docker is not available"})

    with pytest.raises(ProviderUnavailableError, match="Docker is not available"):
        _provider(handler).provision(config)


def test_provision_unreachable_host_is_unavailable(config):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailableError, match="unreachable"):
        _provider(handler).provision(config)


def test_get_status_not_found_is_error_status():
    provider = _provider(lambda request: httpx.Response(404, json={"message": "Session not found: s1"}))
    status = provider.get_status("s1")
    assert status.status == "error"


def test_get_status_maps_in_flight_states():
    provider = _provider(lambda request: httpx.Response(200, json={"id": "sb-s1-1", "status": "cloning", "url": None}))
    status = provider.get_status("s1")
    assert status.status == "provisioning"
    assert status.metadata["actor_instance_id"] == "sb-s1-1"


def test_health_check_follows_actor_status():
    provider = _provider(lambda request: httpx.Response(200, json={"status": "ready", "url": "http://x"}))
    assert provider.health_check("s1") is True


def test_terminate_swallows_host_errors():
    calls = []

    def handler(request):
        calls.append(request.method)
        return httpx.Response(500)

    _provider(handler).terminate("s1")
    assert calls == ["DELETE"]


def test_preview_url_and_identity_routing():
    def handler(request):
        assert request.url.path == "/actors/s1/preview"
        assert request.url.params["port"] == "3000"
        return httpx.Response(200, json={"url": "http://127.0.0.1:50000", "port": 3000})

    provider = _provider(handler)
    assert provider.get_preview_url("s1", 3000) == "http://127.0.0.1:50000"
    assert provider.routing_id("my-session") == "my-session"


def test_each_lifecycle_of_a_session_gets_its_own_actor():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"status": "ready", "url": "http://127.0.0.1:49153"})

    provider = _provider(handler)
    first = provider.provision(ProvisionConfig(session_id="s1", instance_id="sb-s1-1-aaaa", owner="o", repo="r"))
    second = provider.provision(ProvisionConfig(session_id="s1", instance_id="sb-s1-2-bbbb", owner="o", repo="r"))
    provider.terminate(first.instance_handle)

    assert first.instance_handle != second.instance_handle
    assert paths == ["/actors/sb-s1-1-aaaa", "/actors/sb-s1-2-bbbb", "/actors/sb-s1-1-aaaa"]
