"""Tests for the stale call watchdog."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.models.call import CallStatus
from app.services.events import parse_provider_event
from app.services.watchdog import run_watchdog, sweep

from conftest import DummySession


def start(external_id: str, received_at: datetime):
    return parse_provider_event(
        {
            "type": "call-start",
            "call": {"id": external_id, "phoneNumberId": "vapi-pn-1", "assistantId": "agent-1"},
        },
        now=received_at,
    )


@pytest.mark.asyncio
async def test_sweep_fails_only_silent_calls(lifecycle, store, session):
    store.add_phone_number()
    store.add_agent()
    now = datetime.now(timezone.utc)
    await lifecycle.handle(start("vapi-silent", now - timedelta(minutes=30)), session)
    await lifecycle.handle(start("vapi-chatty", now), session)

    expired = await sweep(lifecycle, DummySession, timeout=600)

    statuses = {c.external_id: c.status for c in store.calls.values()}
    assert expired == 1
    assert statuses["vapi-silent"] is CallStatus.FAILED
    assert statuses["vapi-chatty"] is CallStatus.ANSWERED
    [silent] = [c for c in store.calls.values() if c.external_id == "vapi-silent"]
    assert silent.metadata_json["failureReason"] == "no provider activity"


@pytest.mark.asyncio
async def test_watchdog_survives_sweep_errors(lifecycle, monkeypatch):
    calls = 0

    async def flaky_expire(session, *, older_than):
        nonlocal calls
        calls += 1
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(lifecycle, "expire_stale", flaky_expire)

    task = asyncio.create_task(run_watchdog(lifecycle, DummySession, timeout=60, interval=0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls >= 2
