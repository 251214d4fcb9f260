"""Tests for the dashboard call endpoints."""
from __future__ import annotations

import pytest

from app.core.errors import ProviderError
from app.models.call import CallStatus

OUTBOUND = {"phoneNumberId": "pn-1", "agentId": "agent-1", "recipientNumber": "+15550002222"}


@pytest.fixture
def routed(store):
    store.add_phone_number()
    store.add_agent()
    return store


def post_event(client, kind, external_id):
    return client.post("/api/webhooks/vapi", json={"type": kind, "call": {"id": external_id}})


def test_outbound_call_is_created_and_linked(client, routed):
    response = client.post("/api/calls/outbound", json=OUTBOUND)

    assert response.status_code == 201
    call = response.json()["call"]
    assert call["status"] == "initiated"
    assert call["direction"] == "outbound"
    assert call["externalId"] == "vapi-out-1"
    [request] = client.app.state.vapi.created
    assert request["phone_number_id"] == "vapi-pn-1"
    assert request["assistant_id"] == "vapi-asst-1"
    assert request["metadata"] == {"callId": call["id"]}


def test_outbound_call_with_unknown_agent_is_404(client, routed):
    response = client.post("/api/calls/outbound", json={**OUTBOUND, "agentId": "nope"})

    assert response.status_code == 404
    assert routed.calls == {}


def test_provider_failure_marks_call_failed(client, routed):
    client.app.state.vapi.error = ProviderError("Vapi API error: 400", status_code=400)

    response = client.post("/api/calls/outbound", json=OUTBOUND)

    assert response.status_code == 502
    [call] = routed.calls.values()
    assert call.status is CallStatus.FAILED
    assert call.metadata_json["failureReason"] == "Vapi API error: 400"


def test_list_and_get_calls(client, routed):
    created = client.post("/api/calls/outbound", json=OUTBOUND).json()["call"]

    listed = client.get("/api/calls", params={"direction": "outbound"})
    fetched = client.get(f"/api/calls/{created['id']}")
    missing = client.get("/api/calls/unknown")

    assert [c["id"] for c in listed.json()["calls"]] == [created["id"]]
    assert fetched.json()["call"]["recipientNumber"] == "+15550002222"
    assert missing.status_code == 404


def test_end_call_hangs_up_and_completes(client, routed):
    created = client.post("/api/calls/outbound", json=OUTBOUND).json()["call"]

    ended = client.post(f"/api/calls/{created['id']}/end")
    again = client.post(f"/api/calls/{created['id']}/end")

    assert ended.status_code == 200
    assert ended.json()["call"]["status"] == "completed"
    assert client.app.state.vapi.ended == ["vapi-out-1"]
    assert again.status_code == 409


def test_transcripts_are_returned_in_speech_order(client, routed):
    client.post(
        "/api/webhooks/vapi",
        json={"type": "call-start", "call": {"id": "vapi-call-1", "phoneNumberId": "vapi-pn-1", "assistantId": "agent-1"}},
    )
    for text, offset in (("later", 900), ("hello", 100), ("middle", 500)):
        client.post(
            "/api/webhooks/vapi",
            json={
                "type": "transcript",
                "call": {"id": "vapi-call-1"},
                "transcript": {"role": "assistant", "transcript": text, "timestampMs": offset},
            },
        )
    [call] = routed.calls.values()

    live = client.get(f"/api/calls/{call.id}/transcripts").json()["transcripts"]
    post_event(client, "call-end", "vapi-call-1")
    stored = client.get(f"/api/calls/{call.id}/transcripts").json()["transcripts"]

    assert [t["content"] for t in live] == ["hello", "middle", "later"]
    assert [t["content"] for t in stored] == ["hello", "middle", "later"]
    assert stored[0]["timestampMs"] == 100


def test_transcripts_for_unknown_call_is_404(client, routed):
    assert client.get("/api/calls/unknown/transcripts").status_code == 404


def test_metrics_endpoint_recomputes_snapshot(client, routed):
    client.post("/api/calls/outbound", json=OUTBOUND)

    response = client.get("/api/realtime/metrics")

    assert response.json() == {"activeCalls": 1, "callsToday": 1, "successRate": 0.0}
