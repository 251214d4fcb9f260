"""Tests for the realtime websocket feed."""
from __future__ import annotations

import time

import pytest


@pytest.fixture
def routed(store):
    store.add_phone_number()
    store.add_agent()
    return store


def wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached")


def test_subscribe_receives_published_messages(client):
    bus = client.app.state.bus

    with client.websocket_connect("/api/realtime/ws") as ws:
        ws.send_json({"action": "subscribe", "topic": "call-abc"})
        assert ws.receive_json() == {"type": "subscribed", "topic": "call-abc"}

        bus.publish("call-other", {"type": "call-status", "callId": "other"})
        bus.publish("call-abc", {"type": "call-status", "callId": "abc"})
        assert ws.receive_json() == {"type": "call-status", "callId": "abc"}

        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_unsubscribe_and_disconnect_release_subscriptions(client):
    bus = client.app.state.bus

    with client.websocket_connect("/api/realtime/ws") as ws:
        ws.send_json({"action": "subscribe", "topic": "metrics-update"})
        ws.receive_json()
        ws.send_json({"action": "subscribe", "topic": "call-abc"})
        ws.receive_json()
        assert bus.subscriber_count("metrics-update") == 1

        ws.send_json({"action": "unsubscribe", "topic": "metrics-update"})
        assert ws.receive_json() == {"type": "unsubscribed", "topic": "metrics-update"}
        assert bus.subscriber_count("metrics-update") == 0

    wait_for(lambda: bus.subscriber_count("call-abc") == 0)
    assert bus.stats()["subscriptions"] == 0


def test_malformed_frames_get_error_replies(client):
    with client.websocket_connect("/api/realtime/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"action": "subscribe"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"action": "shout", "topic": "call-abc"})
        assert ws.receive_json()["type"] == "error"


def test_webhook_events_stream_to_viewers(client, routed):
    client.post(
        "/api/webhooks/vapi",
        json={"type": "call-start", "call": {"id": "vapi-call-1", "phoneNumberId": "vapi-pn-1", "assistantId": "agent-1"}},
    )
    [call] = routed.calls.values()

    with client.websocket_connect("/api/realtime/ws") as ws:
        ws.send_json({"action": "subscribe", "topic": f"call-{call.id}"})
        ws.receive_json()
        ws.send_json({"action": "subscribe", "topic": "metrics-update"})
        ws.receive_json()

        client.post(
            "/api/webhooks/vapi",
            json={
                "type": "transcript",
                "call": {"id": "vapi-call-1"},
                "transcript": {"role": "user", "transcript": "Hello?", "timestampMs": 40},
            },
        )
        client.post("/api/webhooks/vapi", json={"type": "hang", "call": {"id": "vapi-call-1"}})

        received = [ws.receive_json() for _ in range(3)]

    # Each topic drains on its own pump, so only per-topic order is fixed.
    on_call = [m for m in received if m.get("callId") == call.id]
    [metrics] = [m for m in received if m["type"] == "metrics-update"]
    transcript, status = on_call
    assert transcript["type"] == "transcript"
    assert transcript["callId"] == call.id
    assert transcript["data"]["content"] == "Hello?"
    assert status["type"] == "call-status"
    assert status["data"]["status"] == "completed"
    assert status["data"]["previousStatus"] == "answered"
    assert metrics == {"type": "metrics-update", "data": {"activeCalls": 0, "callsToday": 1, "successRate": 100.0}}
