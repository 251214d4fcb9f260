"""Shared fixtures: an in-memory stand-in for the repositories and a live bus."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient
import pytest
import pytest_asyncio

from app.core.errors import ProviderError
from app.db.session import get_session
from app.main import app
from app.models.agent import Agent
from app.models.call import ACTIVE_STATUSES, TERMINAL_STATUSES, Call, CallStatus
from app.models.phone_number import PhoneNumber
from app.models.transcript import TranscriptEntry
from app.repositories import agents as agents_repo
from app.repositories import calls as calls_repo
from app.repositories import phone_numbers as phone_numbers_repo
from app.repositories import transcripts as transcripts_repo
from app.services.bus import EventBus
from app.services.lifecycle import CallLifecycle
from app.services.metrics import MetricsAggregator


class DummySession:
    """Minimal AsyncSession stub tracking the transaction calls made on it."""

    def __init__(self) -> None:
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def add(self, obj: object) -> None:
        self.added.append(obj)

    async def flush(self) -> None:
        return None

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeStore:
    """Keeps rows in dicts and answers the repository functions from them."""

    def __init__(self) -> None:
        self.calls: dict[str, Call] = {}
        self.transcripts: list[TranscriptEntry] = []
        self.phone_numbers: dict[str, PhoneNumber] = {}
        self.agents: dict[str, Agent] = {}

    def add_phone_number(self, pn_id: str = "pn-1", external_id: str = "vapi-pn-1", number: str = "+15550000001") -> PhoneNumber:
        phone_number = PhoneNumber(id=pn_id, number=number, external_id=external_id, country_code="US", is_active=True)
        self.phone_numbers[pn_id] = phone_number
        return phone_number

    def add_agent(self, agent_id: str = "agent-1", assistant_id: str | None = "vapi-asst-1") -> Agent:
        agent = Agent(id=agent_id, name="Front Desk", external_assistant_id=assistant_id, model="gpt-4o", is_active=True)
        self.agents[agent_id] = agent
        return agent

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        original_create = calls_repo.create

        async def create(session, **kwargs):
            call = await original_create(session, **kwargs)
            if call.id is None:
                call.id = str(uuid4())
            self.calls[call.id] = call
            return call

        async def get_by_id(session, call_id):
            return self.calls.get(call_id)

        async def find_by_external_id(session, external_id):
            return next((c for c in self.calls.values() if c.external_id == external_id), None)

        async def list_calls(session, *, direction=None, status=None, phone_number_id=None, limit=50, offset=0):
            rows = [
                c
                for c in self.calls.values()
                if (direction is None or c.direction == direction)
                and (status is None or c.status == status)
                and (not phone_number_id or c.phone_number_id == phone_number_id)
            ]
            rows.sort(key=lambda c: c.created_at, reverse=True)
            return rows[offset : offset + limit]

        async def list_stale(session, *, older_than):
            return [
                c
                for c in self.calls.values()
                if c.status not in TERMINAL_STATUSES and (c.last_event_at or c.created_at) < older_than
            ]

        async def metrics_counts(session, *, now):
            today_start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
            window_start = today_start - timedelta(days=7)
            rows = list(self.calls.values())
            in_window = [c for c in rows if c.created_at >= window_start]
            return calls_repo.MetricsCounts(
                active=sum(1 for c in rows if c.status in ACTIVE_STATUSES),
                today=sum(1 for c in rows if c.created_at >= today_start),
                completed=sum(1 for c in in_window if c.status is CallStatus.COMPLETED),
                total=len(in_window),
            )

        async def list_for_call(session, call_id):
            rows = [t for t in self.transcripts if t.call_id == call_id]
            return sorted(rows, key=lambda t: (t.timestamp_ms, t.created_at))

        async def add_transcript(session, entry):
            self.transcripts.append(entry)
            return entry

        async def get_phone_number(session, pn_id):
            return self.phone_numbers.get(pn_id)

        async def find_phone_number(session, external_id):
            return next((p for p in self.phone_numbers.values() if p.external_id == external_id), None)

        async def get_agent(session, agent_id):
            return self.agents.get(agent_id)

        monkeypatch.setattr(calls_repo, "create", create)
        monkeypatch.setattr(calls_repo, "get_by_id", get_by_id)
        monkeypatch.setattr(calls_repo, "find_by_external_id", find_by_external_id)
        monkeypatch.setattr(calls_repo, "list_calls", list_calls)
        monkeypatch.setattr(calls_repo, "list_stale", list_stale)
        monkeypatch.setattr(calls_repo, "metrics_counts", metrics_counts)
        monkeypatch.setattr(transcripts_repo, "list_for_call", list_for_call)
        monkeypatch.setattr(transcripts_repo, "add", add_transcript)
        monkeypatch.setattr(phone_numbers_repo, "get_by_id", get_phone_number)
        monkeypatch.setattr(phone_numbers_repo, "find_by_external_id", find_phone_number)
        monkeypatch.setattr(agents_repo, "get_by_id", get_agent)


class Recorder:
    """Bus callback that keeps every message it receives."""

    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == kind]


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> FakeStore:
    fake = FakeStore()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def session() -> DummySession:
    return DummySession()


@pytest_asyncio.fixture
async def bus():
    event_bus = EventBus(queue_size=10)
    await event_bus.start()
    yield event_bus
    await event_bus.shutdown()


@pytest_asyncio.fixture
async def lifecycle(bus: EventBus) -> CallLifecycle:
    return CallLifecycle(bus, MetricsAggregator(bus))


class FakeVapi:
    """Records provider calls instead of reaching the network."""

    def __init__(self) -> None:
        self.created: list[dict] = []
        self.ended: list[str] = []
        self.error: ProviderError | None = None

    async def create_call(self, **kwargs) -> dict:
        if self.error is not None:
            raise self.error
        self.created.append(kwargs)
        return {"id": f"vapi-out-{len(self.created)}", "status": "queued"}

    async def end_call(self, external_id: str) -> dict:
        if self.error is not None:
            raise self.error
        self.ended.append(external_id)
        return {"id": external_id, "status": "ended"}

    async def aclose(self) -> None:
        return None


@pytest.fixture
def client(store: FakeStore):
    async def override_session():
        yield DummySession()

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        test_client.app.state.vapi = FakeVapi()
        yield test_client
    app.dependency_overrides.clear()
