"""FastAPI application for the AI call dashboard."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import settings
from .db.session import SessionLocal, dispose_engine
from .routers import calls, realtime, webhooks
from .services.bus import EventBus
from .services.lifecycle import CallLifecycle
from .services.metrics import MetricsAggregator
from .services.transcripts import TranscriptBuffer
from .services.vapi import VapiClient
from .services.watchdog import run_watchdog

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    bus = EventBus(
        queue_size=settings.subscriber_queue_size,
        overflow_policy=settings.subscriber_overflow_policy,
    )
    await bus.start()
    metrics = MetricsAggregator(bus)
    lifecycle = CallLifecycle(bus, metrics, TranscriptBuffer())
    vapi = VapiClient.from_settings()
    if not settings.vapi_api_key:
        logger.warning("VAPI_API_KEY is not set; outbound calls will fail")

    app.state.bus = bus
    app.state.metrics = metrics
    app.state.lifecycle = lifecycle
    app.state.vapi = vapi

    tasks: list[asyncio.Task[None]] = []
    if settings.metrics_refresh_seconds > 0:
        tasks.append(
            asyncio.create_task(
                metrics.run_periodic(SessionLocal, settings.metrics_refresh_seconds), name="metrics-refresh"
            )
        )
    if settings.stale_call_timeout_seconds > 0:
        tasks.append(
            asyncio.create_task(
                run_watchdog(
                    lifecycle,
                    SessionLocal,
                    timeout=settings.stale_call_timeout_seconds,
                    interval=settings.watchdog_interval_seconds,
                ),
                name="stale-call-watchdog",
            )
        )

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        await bus.shutdown()
        await vapi.aclose()
        await dispose_engine()


app = FastAPI(title="Callboard API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(calls.router, prefix="/api/calls", tags=["calls"])
app.include_router(realtime.router, prefix="/api/realtime", tags=["realtime"])


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)
