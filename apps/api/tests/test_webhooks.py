"""Tests for the provider webhook endpoint."""
from __future__ import annotations

import hashlib
import hmac
import json

import pytest
from sqlalchemy.exc import OperationalError

from app.models.call import CallStatus
from app.repositories import transcripts as transcripts_repo
from app.routers import webhooks

START = {
    "type": "call-start",
    "call": {"id": "vapi-call-1", "phoneNumberId": "vapi-pn-1", "assistantId": "agent-1"},
}


@pytest.fixture
def routed(store):
    store.add_phone_number()
    store.add_agent()
    return store


def test_call_start_creates_call(client, routed):
    response = client.post("/api/webhooks/vapi", json=START)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    [call] = routed.calls.values()
    assert call.status is CallStatus.ANSWERED


@pytest.mark.parametrize(
    "body",
    [
        {"type": "call-start", "call": {"id": "vapi-call-1"}},
        {"type": "call-end", "call": {}},
        {"type": "speech-update", "call": {"id": "vapi-call-1"}},
        {"type": "hang", "call": {"id": "never-seen"}},
    ],
)
def test_rejected_events_are_still_acknowledged(client, routed, body):
    response = client.post("/api/webhooks/vapi", json=body)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert routed.calls == {}


def test_non_json_body_is_acknowledged(client, routed):
    response = client.post("/api/webhooks/vapi", content=b"not json", headers={"content-type": "text/plain"})

    assert response.status_code == 200


def test_events_after_close_are_acknowledged_and_ignored(client, routed):
    client.post("/api/webhooks/vapi", json=START)
    client.post("/api/webhooks/vapi", json={"type": "hang", "call": {"id": "vapi-call-1"}})

    response = client.post(
        "/api/webhooks/vapi", json={"type": "status-update", "call": {"id": "vapi-call-1", "status": "in-progress"}}
    )

    assert response.status_code == 200
    [call] = routed.calls.values()
    assert call.status is CallStatus.COMPLETED


def test_signature_is_enforced_when_secret_configured(client, routed, monkeypatch):
    monkeypatch.setattr(webhooks.settings, "vapi_webhook_secret", "s3cret")
    body = json.dumps(START).encode()
    good = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    rejected = client.post(
        "/api/webhooks/vapi", content=body, headers={"content-type": "application/json", "x-vapi-signature": "bad"}
    )
    accepted = client.post(
        "/api/webhooks/vapi", content=body, headers={"content-type": "application/json", "x-vapi-signature": good}
    )

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert len(routed.calls) == 1


def test_verify_signature_rejects_missing_header():
    assert webhooks.verify_signature("s3cret", b"{}", "") is False


def test_storage_failures_are_acknowledged(client, routed, monkeypatch):
    client.post("/api/webhooks/vapi", json=START)

    async def unavailable(session, entry):
        raise OperationalError("INSERT INTO transcripts", {}, ConnectionError("database unavailable"))

    monkeypatch.setattr(transcripts_repo, "add", unavailable)
    response = client.post(
        "/api/webhooks/vapi",
        json={
            "type": "transcript",
            "call": {"id": "vapi-call-1"},
            "transcript": {"role": "user", "transcript": "hello", "timestampMs": 120},
        },
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert routed.transcripts == []


def test_fractional_transcript_offsets_are_stored(client, routed):
    client.post("/api/webhooks/vapi", json=START)

    response = client.post(
        "/api/webhooks/vapi",
        json={
            "type": "transcript",
            "call": {"id": "vapi-call-1"},
            "transcript": {"role": "assistant", "transcript": "Hi there", "timestampMs": 1234.5},
        },
    )

    assert response.status_code == 200
    [entry] = routed.transcripts
    assert entry.timestamp_ms == 1234
