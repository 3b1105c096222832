"""
tests.test_api
~~~~~~~~~~~~~~

HTTP 控制接口、WebSocket 与 SSE 订阅端点。
"""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from live_relay.api.sse import sse_event_stream
from live_relay.core.rate_limit import limiter
from live_relay.main import create_app


@pytest.fixture()
def client(factory):
    with TestClient(create_app(upstream_factory=factory)) as c:
        yield c


# ── 系统 ──────────────────────────────────────────────────────────────

class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["rooms"] == 0
        assert body["subscribers"] == 0

    def test_openapi_documents_control_errors(self, client: TestClient) -> None:
        paths = client.get("/openapi.json").json()["paths"]

        assert {"400", "502"} <= set(paths["/connect"]["post"]["responses"])
        assert {"400", "502"} <= set(paths["/disconnect"]["post"]["responses"])


# ── 控制接口 ──────────────────────────────────────────────────────────

class TestControl:
    """测试 /status /connect /disconnect。"""

    def test_status_starts_empty(self, client: TestClient) -> None:
        resp = client.get("/status")

        assert resp.status_code == 200
        assert resp.json() == {"rooms": []}

    def test_connect_then_disconnect(self, client: TestClient, factory) -> None:
        resp = client.post("/connect", json={"uniqueId": "  alice "})
        assert resp.status_code == 200
        assert resp.json() == {"connected": True, "uniqueId": "alice"}
        assert client.get("/status").json() == {"rooms": ["alice"]}

        resp = client.post("/disconnect", json={"uniqueId": "alice"})
        assert resp.status_code == 200
        assert resp.json() == {"disconnected": True, "uniqueId": "alice"}
        assert client.get("/status").json() == {"rooms": []}
        assert factory.connect_calls("alice") == 1
        assert factory.disconnect_calls("alice") == 1

    def test_repeated_connect_reuses_upstream(self, client: TestClient, factory) -> None:
        client.post("/connect", json={"uniqueId": "alice"})
        client.post("/connect", json={"uniqueId": "alice"})

        assert len(factory.created["alice"]) == 1

    def test_disconnect_unknown_room_succeeds(self, client: TestClient, factory) -> None:
        resp = client.post("/disconnect", json={"uniqueId": "nobody"})

        assert resp.status_code == 200
        assert resp.json()["disconnected"] is True
        assert factory.created == {}

    @pytest.mark.parametrize("path", ["/connect", "/disconnect"])
    @pytest.mark.parametrize(
        "payload", [{}, {"uniqueId": None}, {"uniqueId": ""}, {"uniqueId": "   "}],
    )
    def test_blank_room_rejected(self, client: TestClient, factory, path: str, payload: dict) -> None:
        """房间名为空时返回 400，且不会创建任何上游连接。"""
        resp = client.post(path, json=payload)

        assert resp.status_code == 400
        assert resp.json() == {"error": "uniqueId required"}
        assert factory.created == {}

    def test_missing_body_rejected(self, client: TestClient) -> None:
        resp = client.post("/connect")

        assert resp.status_code == 400
        assert resp.json() == {"error": "uniqueId required"}

    def test_connect_failure_returns_502(self, client: TestClient) -> None:
        resp = client.post("/connect", json={"uniqueId": "offline"})

        assert resp.status_code == 502
        error = resp.json()["error"]
        assert error["name"] == "RuntimeError"
        assert error["message"] == "主播未开播"
        assert "stack" in error
        assert client.get("/status").json() == {"rooms": []}

    def test_disconnect_failure_returns_502(self, client: TestClient, factory) -> None:
        factory.disconnect_error = ConnectionError("socket already gone")
        client.post("/connect", json={"uniqueId": "alice"})

        resp = client.post("/disconnect", json={"uniqueId": "alice"})

        assert resp.status_code == 502
        assert resp.json()["error"]["name"] == "ConnectionError"
        assert client.get("/status").json() == {"rooms": []}


# ── WebSocket ─────────────────────────────────────────────────────────

class TestWebSocket:
    """测试 WebSocket 订阅端点。"""

    def test_receives_envelopes_for_selected_events(self, factory) -> None:
        factory.announce = True
        with TestClient(create_app(upstream_factory=factory)) as client:
            with client.websocket_connect("/alice?events=*") as ws:
                frame = ws.receive_json()

                assert frame["type"] == "connected"
                assert frame["room"] == "alice"
                assert frame["payload"] == {"uniqueId": "alice"}
                assert isinstance(frame["timestamp"], int)

        assert factory.connect_calls("alice") == 1
        assert factory.disconnect_calls("alice") == 1

    def test_connect_failure_sends_error_then_closes(self, client: TestClient) -> None:
        """上游连接失败：收到一条 error 信封，随后连接以 1011 关闭。"""
        with client.websocket_connect("/offline") as ws:
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["payload"]["name"] == "RuntimeError"
            assert frame["payload"]["message"] == "主播未开播"

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1011
        assert client.get("/status").json() == {"rooms": []}

    def test_blank_room_closes_with_policy_violation(self, client: TestClient, factory) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/%20"):
                pass

        assert exc_info.value.code == 1008
        assert factory.created == {}


# ── SSE ───────────────────────────────────────────────────────────────

class TestSse:
    """测试 SSE 订阅端点。"""

    def test_blank_room_rejected(self, client: TestClient, factory) -> None:
        resp = client.get("/%20")

        assert resp.status_code == 400
        assert resp.json() == {"error": "username required"}
        assert factory.created == {}

    @pytest.mark.asyncio
    async def test_event_stream(self, hub, factory, settle) -> None:
        """输出 :ok、事件帧、心跳；生成器关闭后离开房间并断开上游。"""
        subscriber = hub.new_sse_subscriber("alice", "gift")
        stream = sse_event_stream(hub, subscriber, keepalive_seconds=0.05)

        assert await stream.__anext__() == ":ok\n\n"
        await settle(hub)
        assert hub.rooms.status() == ["alice"]

        factory.last("alice").emit("chat", {"msgId": "1"})
        factory.last("alice").emit("gift", {"giftId": 7})
        frame = await stream.__anext__()
        assert frame.startswith("event: gift\ndata: ")
        assert json.loads(frame.split("data: ", 1)[1])["payload"] == {"giftId": 7}

        assert await stream.__anext__() == ": keepalive\n\n"

        await stream.aclose()
        await settle(hub)

        assert subscriber.closed
        assert factory.disconnect_calls("alice") == 1
        assert hub.rooms.status() == []

    @pytest.mark.asyncio
    async def test_event_stream_ends_on_connect_failure(self, hub, settle) -> None:
        subscriber = hub.new_sse_subscriber("offline", None)
        stream = sse_event_stream(hub, subscriber, keepalive_seconds=5)

        frames = [frame async for frame in stream]
        await settle(hub)

        assert frames[0] == ":ok\n\n"
        assert len(frames) == 2
        assert frames[1].startswith("event: error\n")
        assert json.loads(frames[1].split("data: ", 1)[1])["payload"]["message"] == "主播未开播"


# ── 限流 ──────────────────────────────────────────────────────────────

class TestRateLimit:
    """测试控制接口的限流（测试环境默认关闭，这里临时打开）。"""

    def test_status_over_limit_returns_429(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(limiter, "enabled", True)
        limiter.reset()

        codes = [client.get("/status").status_code for _ in range(40)]

        assert codes[0] == 200
        assert 429 in codes
        limiter.reset()

    def test_subscription_endpoints_not_limited(self, client: TestClient, monkeypatch) -> None:
        """SSE / WS 订阅端点不受控制接口限流影响。"""
        monkeypatch.setattr(limiter, "enabled", True)
        limiter.reset()

        codes = [client.get("/%20").status_code for _ in range(20)]

        assert set(codes) == {400}
        limiter.reset()
