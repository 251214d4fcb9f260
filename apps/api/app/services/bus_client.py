"""Websocket client for the realtime bus.

Mirrors what the dashboard does in the browser: subscribe to topics, route
incoming messages to listeners and survive connection loss by reconnecting
and replaying its subscriptions.
"""
from __future__ import annotations

import asyncio
from contextlib import suppress
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Literal, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.config import settings
from ..core.errors import BusConnectionError
from ..schemas.realtime import METRICS_TOPIC, call_topic

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]
ReconnectHandler = Callable[[], Union[None, Awaitable[None]]]
ClientState = Literal["connected", "reconnecting", "disconnected"]

_ACK_TYPES = frozenset({"subscribed", "unsubscribed", "pong", "error"})


class BusClient:
    """Handle the lifespan of one bus connection and its listeners."""

    def __init__(
        self,
        url: str,
        *,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        on_reconnect: ReconnectHandler | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._url = url
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._ws: Any = None
        self._state: ClientState = "disconnected"
        self._closing = False
        self._listeners: dict[str, list[MessageHandler]] = {}
        self._reconnect_handlers: list[ReconnectHandler] = []
        if on_reconnect is not None:
            self._reconnect_handlers.append(on_reconnect)
        self._receive_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, on_reconnect: ReconnectHandler | None = None) -> "BusClient":
        return cls(
            settings.bus_url,
            max_attempts=settings.bus_reconnect_attempts,
            base_delay=settings.bus_reconnect_base_delay,
            on_reconnect=on_reconnect,
        )

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == "connected"

    @property
    def topics(self) -> list[str]:
        return list(self._listeners)

    def on_reconnect(self, handler: ReconnectHandler) -> None:
        self._reconnect_handlers.append(handler)

    async def connect(self) -> None:
        """Open the connection, retrying with linear backoff.

        Raises ``BusConnectionError`` after ``max_attempts`` failures.
        """

        self._closing = False
        await self._establish()
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def disconnect(self) -> None:
        """Close the connection and forget every listener."""

        self._closing = True
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._close_socket()
        self._listeners.clear()
        self._reconnect_handlers.clear()
        self._state = "disconnected"
        logger.info("Bus client disconnected from %s", self._url)

    async def send(self, frame: dict[str, Any]) -> None:
        if self._ws is None or self._state != "connected":
            raise BusConnectionError("Bus client is not connected")
        await self._ws.send(json.dumps(frame))

    async def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], Awaitable[None]]:
        """Listen on ``topic``; returns an idempotent async unsubscribe."""

        handlers = self._listeners.setdefault(topic, [])
        first = not handlers
        handlers.append(handler)
        if first and self.is_connected:
            await self.send({"action": "subscribe", "topic": topic})

        removed = False

        async def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            await self._remove(topic, handler)

        return unsubscribe

    async def subscribe_to_call(self, call_id: str, handler: MessageHandler) -> Callable[[], Awaitable[None]]:
        return await self.subscribe(call_topic(call_id), handler)

    async def subscribe_to_metrics(self, handler: MessageHandler) -> Callable[[], Awaitable[None]]:
        return await self.subscribe(METRICS_TOPIC, handler)

    async def _remove(self, topic: str, handler: MessageHandler) -> None:
        handlers = self._listeners.get(topic)
        if not handlers:
            return
        with suppress(ValueError):
            handlers.remove(handler)
        if handlers:
            return
        del self._listeners[topic]
        if self.is_connected:
            try:
                await self.send({"action": "unsubscribe", "topic": topic})
            except (ConnectionClosed, OSError):
                logger.debug("Unsubscribe frame for %s lost with the connection", topic)

    async def _establish(self) -> None:
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._ws = await websockets.connect(self._url)
                # Subscriptions must be back in place before the client counts as connected.
                for topic in list(self._listeners):
                    await self._ws.send(json.dumps({"action": "subscribe", "topic": topic}))
            except (OSError, WebSocketException) as exc:
                last_error = exc
                await self._close_socket()
                logger.warning(
                    "Bus connection attempt %d/%d to %s failed: %s", attempt, self._max_attempts, self._url, exc
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._base_delay * attempt)
                continue
            self._state = "connected"
            logger.info("Bus client connected to %s", self._url)
            return

        self._state = "disconnected"
        raise BusConnectionError(
            f"Could not reach the bus at {self._url} after {self._max_attempts} attempts"
        ) from last_error

    async def _receive_loop(self) -> None:
        while True:
            try:
                raw = await self._ws.recv()
            except asyncio.CancelledError:
                raise
            except (ConnectionClosed, OSError) as exc:
                if self._closing:
                    return
                logger.warning("Bus connection lost (%s); live updates paused", exc)
                self._state = "reconnecting"
                await self._close_socket()
                try:
                    await self._establish()
                except BusConnectionError:
                    logger.error("Giving up on the bus at %s", self._url)
                    return
                await self._notify_reconnected()
                continue
            await self._dispatch(raw)

    async def _dispatch(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            return
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding non-JSON bus frame")
            return
        if not isinstance(message, dict):
            return

        kind = message.get("type")
        if kind in _ACK_TYPES:
            logger.debug("Bus ack %s for %s", kind, message.get("topic"))
            return
        if kind == METRICS_TOPIC:
            topic = METRICS_TOPIC
        elif message.get("callId"):
            topic = call_topic(str(message["callId"]))
        else:
            logger.debug("Unroutable bus message of type %s", kind)
            return

        for handler in list(self._listeners.get(topic, ())):
            await self._invoke(handler, message)

    async def _invoke(self, handler: Callable[..., Any], *args: Any) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - one bad listener must not stop the loop
            logger.exception("Bus listener %r failed", handler)

    async def _notify_reconnected(self) -> None:
        for handler in list(self._reconnect_handlers):
            await self._invoke(handler)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with suppress(ConnectionClosed, OSError):
                await ws.close()
