"""Background task that fails calls the provider stopped reporting on."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging

from .lifecycle import CallLifecycle
from .metrics import SessionFactory

logger = logging.getLogger(__name__)


async def sweep(lifecycle: CallLifecycle, session_factory: SessionFactory, *, timeout: float) -> int:
    """Fail every live call silent for longer than ``timeout`` seconds."""

    older_than = datetime.now(timezone.utc) - timedelta(seconds=timeout)
    async with session_factory() as session:
        return await lifecycle.expire_stale(session, older_than=older_than)


async def run_watchdog(
    lifecycle: CallLifecycle,
    session_factory: SessionFactory,
    *,
    timeout: float,
    interval: float,
) -> None:
    """Sweep for stale calls every ``interval`` seconds until cancelled."""

    logger.info("Stale call watchdog running (timeout=%ss, interval=%ss)", timeout, interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep(lifecycle, session_factory, timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - retry on the next tick
            logger.exception("Stale call sweep failed")
