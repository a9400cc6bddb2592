"""Tests for the HTTP transport."""

import asyncio

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from starlette.background import BackgroundTask

import server
from via.message import Message
from via.registry import TopicRegistry
from via.subscription import Subscription


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(server, "registry", TopicRegistry(store=store, max_history_size=3))
    with TestClient(server.app) as c:
        yield c


# ── publish ───────────────────────────────────────────────────────────────

class TestPublish:
    def test_history_topic_reports_remaining(self, client):
        resp = client.post("/hmsg/room", content=b"hi")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "topic": "hmsg/room", "remaining": 2}

    def test_plain_topic_has_no_remaining(self, client):
        resp = client.post("/room", content=b"hi")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "topic": "room"}

    def test_password_on_publish_is_forbidden(self, client):
        resp = client.post("/room:secret", content=b"hi")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"


# ── compact & clear ───────────────────────────────────────────────────────

class TestHistoryRoutes:
    def test_compact_requires_history_topic(self, client):
        resp = client.put("/room", content=b"x", headers={"Last-Event-ID": "1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "HISTORY_DISABLED"

    def test_compact_requires_cursor(self, client):
        resp = client.put("/hmsg/room", content=b"x")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"

    def test_compact_replaces_prefix(self, client, store):
        for body in (b"a", b"b", b"c"):
            client.post("/hmsg/room", content=body)

        resp = client.put("/hmsg/room?last_id=2", content=b"summary")

        assert resp.status_code == 200
        assert [(m.id, m.data) for m in store.load("hmsg/room")] == [(2, b"summary"), (3, b"c")]

    def test_clear_requires_history_topic(self, client):
        resp = client.delete("/room")
        assert resp.status_code == 400

    def test_clear_drops_history(self, client, store):
        client.post("/hmsg/room", content=b"a")

        resp = client.delete("/hmsg/room")

        assert resp.status_code == 200
        assert store.load("hmsg/room") is None
        assert client.post("/hmsg/room", content=b"b").json()["remaining"] == 2


# ── subscribe ─────────────────────────────────────────────────────────────

class TestSubscribe:
    def test_blocking_get_returns_next_retained_message(self, client):
        client.post("/hmsg/room", content=b"first")
        client.post("/hmsg/room", content=b"second")

        resp = client.get("/hmsg/room", headers={"Last-Event-ID": "1"})

        assert resp.status_code == 200
        assert resp.content == b"second"
        assert resp.headers["last-event-id"] == "2"
        assert server.registry.topic_count() == 0

    def test_malformed_cursor_replays_everything(self, client):
        client.post("/hmsg/room", content=b"first")

        resp = client.get("/hmsg/room?last_id=oops")

        assert resp.content == b"first"

    def test_cursor_on_plain_topic_is_rejected(self, client):
        resp = client.get("/room", headers={"Last-Event-ID": "4"})
        assert resp.status_code == 400

    def test_empty_key_is_rejected(self, client):
        assert client.post("/", content=b"x").status_code == 400


# ── admin ─────────────────────────────────────────────────────────────────

class TestAdmin:
    def test_health(self, client):
        body = client.get("/_/health").json()
        assert body["topics"] == 0
        assert body["subscribers"] == 0
        assert body["uptime_sec"] >= 0

    def test_stats_counts_published_messages(self, client):
        client.post("/room", content=b"a")
        client.post("/room", content=b"b")

        body = client.get("/_/stats").json()

        assert body["topics"] == {}
        assert body["counters"]["messages_published"] == 2
        assert body["counters"]["topics_released"] == 2


# ── SSE rendering ─────────────────────────────────────────────────────────

class TestEventStream:
    @pytest.mark.asyncio
    async def test_stream_frames_messages_until_closed(self):
        released = []
        sub = Subscription("hmsg/t", queue_max_size=4)
        sub.deliver(Message(1, b"a"))
        sub.deliver(Message(2, b"b"))
        sub.close()

        frames = [f async for f in server.event_stream(sub, lambda: released.append(True))]

        assert frames == [b"id: 1\ndata: a\n\n", b"id: 2\ndata: b\n\n"]
        assert released == [True]

    @pytest.mark.asyncio
    async def test_idle_stream_sends_ping(self):
        sub = Subscription("t", queue_max_size=4)
        stream = server.event_stream(sub, lambda: None, include_id=False, keepalive=0.01)

        assert await asyncio.wait_for(stream.__anext__(), timeout=1) == b": ping\n\n"

        sub.deliver(Message(1, b"x"))
        assert await stream.__anext__() == b"data: x\n\n"
        await stream.aclose()



# ── release on disconnect ─────────────────────────────────────────────────

def _request(path, query=b"", receive=None):
    async def disconnected():
        return {"type": "http.disconnect"}

    scope = {
        "type": "http",
        "method": "GET",
        "path": "/" + path,
        "query_string": query,
        "headers": [],
    }
    return Request(scope, receive or disconnected)


class TestRelease:
    @pytest.fixture
    def calls(self, registry, monkeypatch):
        monkeypatch.setattr(server, "registry", registry)
        calls = []
        unsubscribe = registry.unsubscribe

        def counting(key, subscription):
            calls.append(subscription)
            unsubscribe(key, subscription)

        monkeypatch.setattr(registry, "unsubscribe", counting)
        return calls

    @pytest.mark.asyncio
    async def test_releaser_unsubscribes_once(self, registry, calls):
        sub = await registry.subscribe("room")
        actor = registry.get("room")
        release = server._releaser("room", sub)

        release()
        release()
        await sub.drain()

        assert calls == [sub]
        await asyncio.wait_for(actor.wait_closed(), timeout=2)
        assert registry.topic_count() == 0

    @pytest.mark.asyncio
    async def test_closing_live_stream_releases_topic(self, registry, calls):
        sub = await registry.subscribe("room")
        actor = registry.get("room")
        stream = server.event_stream(sub, server._releaser("room", sub), include_id=False, keepalive=5)
        await registry.publish("room", b"hi")

        assert await stream.__anext__() == b"data: hi\n\n"
        await stream.aclose()

        assert calls == [sub]
        await asyncio.wait_for(actor.wait_closed(), timeout=2)
        assert registry.topic_count() == 0

    @pytest.mark.asyncio
    async def test_sse_response_background_and_stream_release_once(self, registry, calls):
        resp = await server.subscribe("room", _request("room", b"sse"))
        actor = registry.get("room")
        await registry.publish("room", b"hi")

        assert isinstance(resp.background, BackgroundTask)
        assert await resp.body_iterator.__anext__() == b"data: hi\n\n"
        await resp.background()
        await resp.body_iterator.aclose()

        assert len(calls) == 1
        await asyncio.wait_for(actor.wait_closed(), timeout=2)
        assert registry.topic_count() == 0

    @pytest.mark.asyncio
    async def test_blocking_get_disconnect_returns_no_content(self, registry, calls):
        sub = await registry.subscribe("room")
        actor = registry.get("room")

        resp = await server._next_message(_request("room"), "room", sub)

        assert resp.status_code == 204
        assert calls == [sub]
        assert sub.closed
        await asyncio.wait_for(actor.wait_closed(), timeout=2)
        assert registry.topic_count() == 0
