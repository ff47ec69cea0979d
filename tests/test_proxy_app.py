"""Preview proxy end to end: host decoding, cache, forwarding, error bodies."""

import socket
import threading

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from websockets.sync.server import serve

from proxy.config import ProxyConfig
from proxy.main import create_app
from tests.fakes.provider import FakeProvider

SANDBOX_HOST = "http://4096-abc123def.example.com"


class Upstream:
    """Records forwarded requests and answers with a scripted response."""

    def __init__(self, status_code=200, error=None, **response_kwargs):
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.status_code = status_code
        self.response_kwargs = response_kwargs or {"text": "hello from sandbox"}
        self.error = error

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(await request.aread())
        if self.error:
            raise self.error
        return httpx.Response(self.status_code, **self.response_kwargs)


@pytest.fixture
def provider():
    return FakeProvider()


def _client(provider, upstream, base_url=SANDBOX_HOST):
    app = create_app(
        config=ProxyConfig(domain="example.com", cache_ttl_sec=300),
        provider=provider,
        transport=httpx.MockTransport(upstream),
    )
    return TestClient(app, base_url=base_url)


def test_request_is_forwarded_to_resolved_preview_url(provider):
    upstream = Upstream()
    with _client(provider, upstream) as client:
        resp = client.get("/api/items?page=2", headers={"X-Custom": "1"})

    assert resp.status_code == 200
    assert resp.text == "hello from sandbox"
    assert resp.headers["x-sandbox-id"] == "abc123def"
    assert resp.headers["x-sandbox-port"] == "4096"

    forwarded = upstream.requests[0]
    assert str(forwarded.url) == "http://abc123def.local:4096/api/items?page=2"
    assert forwarded.headers["x-custom"] == "1"
    assert forwarded.headers["x-forwarded-host"] == "4096-abc123def.example.com"
    assert forwarded.headers["x-forwarded-proto"] == "http"
    assert "x-forwarded-for" in forwarded.headers
    assert forwarded.headers["host"] == "abc123def.local:4096"


def test_preview_url_is_cached_between_requests(provider):
    upstream = Upstream()
    with _client(provider, upstream) as client:
        client.get("/")
        client.get("/again")
        stats = client.get("/stats").json()

    assert provider.preview_calls == [("abc123def", 4096)]
    assert stats["totalCached"] == 1
    assert stats["entries"][0]["key"] == "abc123def:4096"


def test_post_body_is_forwarded(provider):
    upstream = Upstream(201, json={"ok": True})
    with _client(provider, upstream) as client:
        resp = client.post("/submit", json={"name": "repobox"})

    assert resp.status_code == 201
    assert resp.json() == {"ok": True}
    assert upstream.requests[0].method == "POST"
    assert b"repobox" in upstream.bodies[0]


def test_upstream_errors_pass_through_unchanged(provider):
    upstream = Upstream(404, text="no such page", headers={"X-Upstream": "yes"})
    with _client(provider, upstream) as client:
        resp = client.get("/missing")

    assert resp.status_code == 404
    assert resp.text == "no such page"
    assert resp.headers["x-upstream"] == "yes"


def test_undecodable_host_is_routing_error(provider):
    upstream = Upstream()
    with _client(provider, upstream, base_url="http://xyz.example.com") as client:
        resp = client.get("/", headers={"Origin": "http://app.example.com"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "routing"
    assert body["error"] == "RoutingError"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert upstream.requests == []
    assert provider.preview_calls == []


def test_unreachable_sandbox_is_upstream_error(provider):
    upstream = Upstream(error=httpx.ConnectError("connection refused"))
    with _client(provider, upstream) as client:
        resp = client.get("/")
        stats = client.get("/stats").json()

    assert resp.status_code == 502
    assert resp.json()["kind"] == "upstream"
    assert stats["totalCached"] == 0


def test_unresolvable_sandbox_is_upstream_error(provider):
    def missing(handle, port):
        raise RuntimeError("sandbox not found")

    provider.get_preview_url = missing
    with _client(provider, Upstream()) as client:
        resp = client.get("/")

    assert resp.status_code == 502
    assert "sandbox not found" in resp.json()["message"]


def test_dns_safe_identifier_is_rehyphenated(provider):
    with _client(provider, Upstream(), base_url="http://3000-9cbb20f460984cd6ba1cdaf96c2ff9b3.example.com") as client:
        client.get("/")

    assert provider.preview_calls == [("9cbb20f4-6098-4cd6-ba1c-daf96c2ff9b3", 3000)]


def test_event_stream_headers(provider):
    upstream = Upstream(content=b"data: hello\n\n", headers={"Content-Type": "text/event-stream"})
    with _client(provider, upstream) as client:
        resp = client.get("/events", headers={"Accept": "text/event-stream, */*"})

    assert resp.text == "data: hello\n\n"
    assert resp.headers["cache-control"] == "no-cache"
    forwarded = upstream.requests[0]
    assert forwarded.headers["accept"] == "text/event-stream"
    assert forwarded.headers["cache-control"] == "no-cache"


def test_provider_upstream_headers_are_attached(provider):
    provider.upstream_headers = {"X-Daytona-Skip-Preview-Warning": "true"}
    upstream = Upstream()
    with _client(provider, upstream) as client:
        client.get("/")

    assert upstream.requests[0].headers["x-daytona-skip-preview-warning"] == "true"


def test_health_and_preflight_are_never_forwarded(provider):
    upstream = Upstream()
    with _client(provider, upstream) as client:
        health = client.get("/health")
        preflight = client.options("/anything")

    assert health.status_code == 200
    body = health.json()
    assert body["status"] == "ok"
    assert body["cache"] == {"size": 0, "ttl": 300.0}
    assert preflight.status_code == 204
    assert upstream.requests == []


def test_websocket_with_undecodable_host_is_refused(provider):
    with _client(provider, Upstream(), base_url="http://xyz.example.com") as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws"):
                pass

    assert exc.value.code == 1008


class EchoUpstream:
    """Threaded websocket server standing in for a sandbox dev server."""

    def __init__(self):
        self.handshakes: list[dict] = []
        self.server = serve(self.handle, "127.0.0.1", 0, subprotocols=["repobox.v1"])
        self.url = f"http://127.0.0.1:{self.server.socket.getsockname()[1]}"
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def handle(self, websocket):
        self.handshakes.append({
            "path": websocket.request.path,
            "headers": websocket.request.headers,
            "subprotocol": websocket.subprotocol,
        })
        for message in websocket:
            websocket.send(message if isinstance(message, bytes) else f"echo:{message}")


@pytest.fixture
def echo_upstream():
    upstream = EchoUpstream()
    upstream.thread.start()
    yield upstream
    upstream.server.shutdown()
    upstream.thread.join(5)


def _closed_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_websocket_frames_are_relayed_both_ways(provider, echo_upstream):
    provider.get_preview_url = lambda handle, port: echo_upstream.url
    provider.upstream_headers = {"X-Daytona-Skip-Preview-Warning": "true"}

    with _client(provider, Upstream()) as client:
        with client.websocket_connect("/socket?room=1", subprotocols=["repobox.v1"]) as ws:
            assert ws.accepted_subprotocol == "repobox.v1"
            ws.send_text("ping")
            assert ws.receive_text() == "echo:ping"
            ws.send_bytes(b"\x00\x01")
            assert ws.receive_bytes() == b"\x00\x01"

    handshake = echo_upstream.handshakes[0]
    assert handshake["path"] == "/socket?room=1"
    assert handshake["headers"]["X-Daytona-Skip-Preview-Warning"] == "true"
    assert handshake["subprotocol"] == "repobox.v1"


def test_websocket_to_unreachable_sandbox_closes_and_drops_cache(provider):
    port = _closed_port()
    resolved = []

    def preview_url(handle, sandbox_port):
        resolved.append((handle, sandbox_port))
        return f"http://127.0.0.1:{port}"

    provider.get_preview_url = preview_url

    with _client(provider, Upstream()) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/socket"):
                pass
        stats = client.get("/stats").json()

    assert exc.value.code == 1011
    assert resolved == [("abc123def", 4096)]
    assert stats["totalCached"] == 0
