"""Call lifecycle state machine.

Provider events arrive duplicated, late and out of order. Every mutation of a
call record goes through :class:`CallLifecycle`, which serializes work per
call, rejects edges the transition table does not allow, keeps terminal calls
immutable and publishes the resulting status/transcript events once the
database transaction has committed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
from typing import Any, Awaitable, Callable, TypeVar, Union, assert_never

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, TransitionRejected
from ..core.locks import KeyedLock
from ..models.agent import Agent
from ..models.call import Call, CallDirection, CallStatus
from ..models.phone_number import PhoneNumber
from ..models.transcript import TranscriptEntry
from ..repositories import agents as agents_repo
from ..repositories import calls as calls_repo
from ..repositories import phone_numbers as phone_numbers_repo
from ..repositories import transcripts as transcripts_repo
from ..schemas.calls import CallOut, TranscriptOut
from ..schemas.realtime import CallEventMessage, CallEventType, call_topic
from .bus import EventBus
from .events import CallEnded, CallHungUp, CallStarted, ProviderEvent, StatusChanged, TranscriptReceived
from .metrics import CallTransition, MetricsAggregator
from .transcripts import TranscriptBuffer

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.INITIATED: frozenset({CallStatus.RINGING, CallStatus.ANSWERED, CallStatus.FAILED}),
    CallStatus.RINGING: frozenset({CallStatus.ANSWERED, CallStatus.FAILED}),
    CallStatus.ANSWERED: frozenset({CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.TRANSFERRED}),
    CallStatus.TRANSFERRED: frozenset({CallStatus.COMPLETED, CallStatus.FAILED}),
    CallStatus.COMPLETED: frozenset(),
    CallStatus.FAILED: frozenset(),
}

Outcome = Union[CallTransition, TranscriptEntry, None]


def check_transition(current: CallStatus, target: CallStatus, *, force: bool = False) -> bool:
    """Validate an edge.

    Returns ``False`` for a repeat of the current status, ``True`` when the
    edge may be applied, and raises :class:`TransitionRejected` otherwise.
    ``force`` lets a close signal reach ``completed`` from any live status.
    """

    if current.is_terminal:
        raise TransitionRejected(current, target, "call already closed")
    if current is target:
        return False
    if force and target is CallStatus.COMPLETED:
        return True
    if target not in TRANSITIONS[current]:
        raise TransitionRejected(current, target)
    return True


def compute_duration(started_at: datetime | None, ended_at: datetime | None) -> int:
    """Whole seconds between start and end; 0 when either bound is missing."""

    if started_at is None or ended_at is None:
        return 0
    return max(0, math.floor((ended_at - started_at).total_seconds()))


@dataclass
class _Pending:
    """Side effects held back until the transaction commits."""

    messages: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    transitions: list[CallTransition] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    buffered: list[str] = field(default_factory=list)


class CallLifecycle:
    """Apply provider events and dashboard commands to call records."""

    def __init__(
        self,
        bus: EventBus,
        metrics: MetricsAggregator,
        transcripts: TranscriptBuffer[TranscriptEntry] | None = None,
    ) -> None:
        self._bus = bus
        self._metrics = metrics
        self._transcripts: TranscriptBuffer[TranscriptEntry] = transcripts or TranscriptBuffer()
        self._locks = KeyedLock()

    @property
    def transcripts(self) -> TranscriptBuffer[TranscriptEntry]:
        return self._transcripts

    async def handle(self, event: ProviderEvent, session: AsyncSession) -> Outcome:
        """Apply one provider event under the per-call lock."""

        async def apply(pending: _Pending) -> Outcome:
            if isinstance(event, CallStarted):
                return await self._on_call_started(session, event, pending)
            if isinstance(event, CallEnded):
                return await self._on_call_ended(session, event, pending)
            if isinstance(event, CallHungUp):
                return await self._on_hang(session, event, pending)
            if isinstance(event, StatusChanged):
                return await self._on_status_changed(session, event, pending)
            if isinstance(event, TranscriptReceived):
                return await self._on_transcript(session, event, pending)
            assert_never(event)

        return await self._run(session, await self._event_keys(session, event), apply)

    async def create_outbound(
        self,
        session: AsyncSession,
        *,
        phone_number: PhoneNumber,
        agent: Agent,
        recipient_number: str,
        campaign_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Call:
        """Record an outbound call before the provider has accepted it."""

        pending = _Pending()
        try:
            call = await calls_repo.create(
                session,
                direction=CallDirection.OUTBOUND,
                phone_number_id=phone_number.id,
                agent_id=agent.id,
                caller_number=phone_number.number,
                recipient_number=recipient_number,
                campaign_id=campaign_id,
                metadata=metadata,
            )
            self._record(call, None, CallStatus.INITIATED, call.created_at, pending)
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        await self._after_commit(session, pending)
        logger.info("Outbound call %s initiated to %s", call.id, recipient_number)
        return call

    async def attach_external_id(self, session: AsyncSession, call_id: str, external_id: str) -> Call:
        """Store the provider id unless a webhook already linked it."""

        async def apply(pending: _Pending) -> Call:
            call = await self._require_by_id(session, call_id)
            if call.external_id is None:
                await calls_repo.set_external_id(session, call, external_id)
            elif call.external_id != external_id:
                logger.warning(
                    "Call %s already linked to %s; ignoring %s", call_id, call.external_id, external_id
                )
            return call

        return await self._run(session, (call_id, external_id), apply)

    async def mark_failed(self, session: AsyncSession, call_id: str, *, reason: str) -> CallTransition | None:
        """Move a live call to ``failed`` and remember why."""

        call = await self._require_by_id(session, call_id)

        async def apply(pending: _Pending) -> CallTransition | None:
            fresh = await self._require_by_id(session, call_id)
            fresh.metadata_json = {**(fresh.metadata_json or {}), "failureReason": reason}
            now = datetime.now(timezone.utc)
            return await self._transition(
                session, fresh, CallStatus.FAILED, at=now, pending=pending, ended_at=fresh.ended_at or now
            )

        return await self._run(session, (call.id, call.external_id), apply)

    async def close(self, session: AsyncSession, call_id: str) -> CallTransition | None:
        """Force a live call to ``completed`` after the dashboard hung it up."""

        call = await self._require_by_id(session, call_id)

        async def apply(pending: _Pending) -> CallTransition | None:
            fresh = await self._require_by_id(session, call_id)
            return await self._close(session, fresh, datetime.now(timezone.utc), pending)

        return await self._run(session, (call.id, call.external_id), apply)

    async def expire_stale(self, session: AsyncSession, *, older_than: datetime) -> int:
        """Fail every live call that has been silent since ``older_than``."""

        expired = 0
        for call in await calls_repo.list_stale(session, older_than=older_than):
            try:
                if await self.mark_failed(session, call.id, reason="no provider activity") is not None:
                    expired += 1
            except TransitionRejected:
                logger.debug("Call %s closed before the watchdog reached it", call.id)
        if expired:
            logger.warning("Watchdog failed %d stale call(s)", expired)
        return expired

    async def _event_keys(self, session: AsyncSession, event: ProviderEvent) -> tuple[str | None, ...]:
        """Lock on the internal call id as well as the provider id.

        Dashboard commands hold the internal id, so a webhook racing one of
        them must take it too, including a ``call-start`` that links itself
        to an outbound record through ``local_call_id``.
        """

        known = await calls_repo.find_by_external_id(session, event.external_id)
        local_call_id = event.local_call_id if isinstance(event, CallStarted) else None
        return (event.external_id, known.id if known is not None else None, local_call_id)

    async def _run(
        self, session: AsyncSession, keys: tuple[str | None, ...], apply: Callable[[_Pending], Awaitable[T]]
    ) -> T:
        pending = _Pending()
        async with self._locks.hold_many(*keys):
            try:
                result = await apply(pending)
                await session.commit()
            except BaseException:
                await session.rollback()
                for call_id in pending.buffered:
                    self._transcripts.discard(call_id)
                raise
            await self._after_commit(session, pending)
        return result

    async def _after_commit(self, session: AsyncSession, pending: _Pending) -> None:
        for topic, message in pending.messages:
            self._bus.publish(topic, message)
        for call_id in pending.closed:
            self._transcripts.discard(call_id)
        for transition in pending.transitions:
            try:
                await self._metrics.observe(transition, session)
            except Exception:  # noqa: BLE001 - the transition is already durable
                logger.exception("Metrics refresh failed after call %s -> %s", transition.call_id, transition.status.value)

    async def _on_call_started(self, session: AsyncSession, event: CallStarted, pending: _Pending) -> Outcome:
        call = await calls_repo.find_by_external_id(session, event.external_id)
        created = False
        if call is None and event.local_call_id:
            call = await calls_repo.get_by_id(session, event.local_call_id)
            if call is not None and call.external_id is None:
                await calls_repo.set_external_id(session, call, event.external_id)
        if call is None:
            phone_number = await phone_numbers_repo.find_by_external_id(session, event.phone_number_external_id)
            agent = await agents_repo.get_by_id(session, event.assistant_id)
            if phone_number is None or agent is None:
                raise NotFoundError(f"Phone number or agent not found for call {event.external_id}")
            call = await calls_repo.create(
                session,
                direction=CallDirection.INBOUND,
                phone_number_id=phone_number.id,
                agent_id=agent.id,
                caller_number=event.customer_number,
                recipient_number=phone_number.number,
                external_id=event.external_id,
                created_at=event.received_at,
            )
            created = True

        started_at = call.started_at or event.started_at or event.received_at
        return await self._transition(
            session,
            call,
            CallStatus.ANSWERED,
            at=event.received_at,
            pending=pending,
            created=created,
            started_at=started_at,
        )

    async def _on_call_ended(self, session: AsyncSession, event: CallEnded, pending: _Pending) -> Outcome:
        call = await self._require_by_external_id(session, event.external_id)
        return await self._close(
            session,
            call,
            event.ended_at or event.received_at,
            pending,
            at=event.received_at,
            cost=event.cost,
            recording_url=event.recording_url,
            summary=event.summary,
        )

    async def _on_hang(self, session: AsyncSession, event: CallHungUp, pending: _Pending) -> Outcome:
        call = await self._require_by_external_id(session, event.external_id)
        return await self._close(session, call, event.received_at, pending)

    async def _on_status_changed(self, session: AsyncSession, event: StatusChanged, pending: _Pending) -> Outcome:
        call = await self._require_by_external_id(session, event.external_id)
        columns: dict[str, Any] = {}
        if event.status is CallStatus.ANSWERED and call.started_at is None:
            columns["started_at"] = event.received_at
        return await self._transition(session, call, event.status, at=event.received_at, pending=pending, **columns)

    async def _on_transcript(self, session: AsyncSession, event: TranscriptReceived, pending: _Pending) -> Outcome:
        call = await self._require_by_external_id(session, event.external_id)
        if call.status.is_terminal:
            raise TransitionRejected(call.status, call.status, "transcript after close")

        if not self._transcripts.is_loaded(call.id):
            await self._transcripts.load(call.id, await transcripts_repo.list_for_call(session, call.id))
        entry = TranscriptEntry(
            id=event.entry_id,
            call_id=call.id,
            speaker=event.speaker,
            content=event.content,
            timestamp_ms=event.timestamp_ms,
            confidence=event.confidence,
            is_final=event.is_final,
            created_at=event.received_at,
        )
        if not await self._transcripts.append(call.id, entry):
            logger.debug("Duplicate transcript %s for call %s", event.entry_id, call.id)
            return None
        pending.buffered.append(call.id)

        await transcripts_repo.add(session, entry)
        await calls_repo.touch(session, call, event.received_at)
        message = CallEventMessage(
            type=CallEventType.TRANSCRIPT,
            call_id=call.id,
            data=TranscriptOut.model_validate(entry).model_dump(mode="json", by_alias=True),
            timestamp=event.received_at,
        )
        pending.messages.append((call_topic(call.id), message.to_wire()))
        return entry

    async def _close(
        self,
        session: AsyncSession,
        call: Call,
        ended_at: datetime,
        pending: _Pending,
        *,
        at: datetime | None = None,
        **columns: Any,
    ) -> CallTransition | None:
        if call.started_at is not None and ended_at < call.started_at:
            ended_at = call.started_at
        return await self._transition(
            session,
            call,
            CallStatus.COMPLETED,
            at=at or ended_at,
            pending=pending,
            force=True,
            ended_at=ended_at,
            duration_sec=compute_duration(call.started_at, ended_at),
            **columns,
        )

    async def _transition(
        self,
        session: AsyncSession,
        call: Call,
        target: CallStatus,
        *,
        at: datetime,
        pending: _Pending,
        force: bool = False,
        created: bool = False,
        **columns: Any,
    ) -> CallTransition | None:
        if not check_transition(call.status, target, force=force):
            logger.debug("Call %s already %s; ignoring repeat", call.id, target.value)
            await calls_repo.touch(session, call, at)
            return None

        previous = None if created else call.status
        await calls_repo.update_status(session, call, target, at=at, **columns)
        logger.info(
            "Call %s %s -> %s", call.id, previous.value if previous else "new", target.value
        )
        return self._record(call, previous, target, at, pending)

    def _record(
        self, call: Call, previous: CallStatus | None, status: CallStatus, at: datetime, pending: _Pending
    ) -> CallTransition:
        transition = CallTransition(
            call_id=call.id, external_id=call.external_id, previous=previous, status=status, at=at
        )
        message = CallEventMessage(
            type=CallEventType.CALL_STATUS,
            call_id=call.id,
            data={
                "status": status.value,
                "previousStatus": previous.value if previous else None,
                "call": CallOut.model_validate(call).model_dump(mode="json", by_alias=True),
            },
            timestamp=at,
        )
        pending.messages.append((call_topic(call.id), message.to_wire()))
        pending.transitions.append(transition)
        if status.is_terminal:
            pending.closed.append(call.id)
        return transition

    async def _require_by_external_id(self, session: AsyncSession, external_id: str) -> Call:
        call = await calls_repo.find_by_external_id(session, external_id)
        if call is None:
            raise NotFoundError(f"No call for provider id {external_id}")
        return call

    async def _require_by_id(self, session: AsyncSession, call_id: str) -> Call:
        call = await calls_repo.get_by_id(session, call_id)
        if call is None:
            raise NotFoundError(f"Call {call_id} not found")
        return call
