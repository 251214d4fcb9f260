"""Live dashboard counters derived from durable call records."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import CallStatus
from ..repositories import calls as calls_repo
from ..schemas.realtime import METRICS_TOPIC, MetricsMessage, MetricsSnapshot
from .bus import EventBus

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]
Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class CallTransition:
    """A status change the lifecycle applied to a call."""

    call_id: str
    external_id: str | None
    previous: CallStatus | None
    status: CallStatus
    at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def success_rate(completed: int, total: int) -> float:
    """Percentage of completed calls, one decimal place, 0 when there are none."""

    if total <= 0:
        return 0.0
    return round(completed / total * 100, 1)


def is_tracked(transition: CallTransition) -> bool:
    """True when a transition can move any of the published counters."""

    was_active = transition.previous is not None and transition.previous.is_active
    if was_active != transition.status.is_active:
        return True
    if transition.previous is None:
        return True
    return transition.status.is_terminal


class MetricsAggregator:
    """Recompute the snapshot from storage and publish it on ``metrics-update``.

    Counters are always rebuilt from call records, so a restart never starts
    from zero and there is no increment/decrement pairing to get wrong.
    """

    def __init__(self, bus: EventBus, *, clock: Clock | None = None) -> None:
        self._bus = bus
        self._clock = clock or _utcnow
        self._snapshot = MetricsSnapshot()
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> MetricsSnapshot:
        return self._snapshot

    async def refresh(
        self, session: AsyncSession, *, now: datetime | None = None, publish: bool = True
    ) -> MetricsSnapshot:
        """Rebuild the snapshot; publishes it unless ``publish`` is false."""

        async with self._lock:
            counts = await calls_repo.metrics_counts(session, now=now or self._clock())
            snapshot = MetricsSnapshot(
                active_calls=counts.active,
                calls_today=counts.today,
                success_rate=success_rate(counts.completed, counts.total),
            )
            self._snapshot = snapshot
        if publish:
            self._bus.publish(METRICS_TOPIC, MetricsMessage(data=snapshot).to_wire())
        return snapshot

    async def observe(self, transition: CallTransition, session: AsyncSession) -> MetricsSnapshot | None:
        """Lifecycle hook: refresh and publish when the transition matters."""

        if not is_tracked(transition):
            return None
        # The transition time comes from the provider; "today" follows our clock.
        return await self.refresh(session)

    async def run_periodic(self, session_factory: SessionFactory, interval: float) -> None:
        """Refresh on a cadence, publishing only when the snapshot changed."""

        while True:
            await asyncio.sleep(interval)
            try:
                async with session_factory() as session:
                    previous = self._snapshot
                    snapshot = await self.refresh(session, publish=False)
                if snapshot != previous:
                    self._bus.publish(METRICS_TOPIC, MetricsMessage(data=snapshot).to_wire())
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - keep refreshing after transient DB errors
                logger.exception("Periodic metrics refresh failed")
