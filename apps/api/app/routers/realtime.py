"""Live dashboard feed: websocket subscriptions and the metrics snapshot."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import get_session
from ..schemas.realtime import ClientFrame, MetricsSnapshot
from ..services.bus import EventBus, Subscription
from ..services.metrics import MetricsAggregator
from .deps import get_bus, get_metrics

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metrics", response_model=MetricsSnapshot, response_model_by_alias=True)
async def get_metrics_snapshot(
    session: AsyncSession = Depends(get_session),
    metrics: MetricsAggregator = Depends(get_metrics),
) -> MetricsSnapshot:
    """Recompute the counters without broadcasting them."""

    return await metrics.refresh(session, publish=False)


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, bus: EventBus = Depends(get_bus)) -> None:
    """Relay bus topics a viewer subscribes to."""

    connection_id = str(uuid4())
    await websocket.accept()
    subscriptions: dict[str, Subscription] = {}

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = ClientFrame.model_validate_json(raw)
            except ValidationError:
                await websocket.send_json({"type": "error", "detail": "Malformed frame"})
                continue

            if frame.action == "ping":
                await websocket.send_json({"type": "pong"})
                continue
            if frame.topic is None:
                await websocket.send_json({"type": "error", "detail": f"{frame.action} requires a topic"})
                continue

            if frame.action == "subscribe":
                if frame.topic not in subscriptions:
                    subscriptions[frame.topic] = bus.subscribe(
                        frame.topic, websocket.send_json, connection_id=connection_id
                    )
                await websocket.send_json({"type": "subscribed", "topic": frame.topic})
            else:
                subscription = subscriptions.pop(frame.topic, None)
                if subscription is not None:
                    subscription.unsubscribe()
                await websocket.send_json({"type": "unsubscribed", "topic": frame.topic})
    except WebSocketDisconnect:
        logger.debug("Realtime viewer %s disconnected", connection_id)
    finally:
        bus.unsubscribe_all(connection_id)
