"""Topic and connection bookkeeping for bus subscriptions."""
from __future__ import annotations

import threading
from typing import Dict, Generic, Protocol, TypeVar


class Registered(Protocol):
    id: str
    topic: str
    connection_id: str | None


S = TypeVar("S", bound=Registered)


class SubscriptionRegistry(Generic[S]):
    """Map topic -> subscriptions and connection -> subscription ids.

    All mutation happens under one lock so producers and connection handlers
    running on different threads see a consistent view. Empty buckets are
    pruned so a torn-down connection leaves nothing behind.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: Dict[str, S] = {}
        self._topics: Dict[str, Dict[str, S]] = {}
        self._connections: Dict[str, set[str]] = {}

    def add(self, subscription: S) -> None:
        with self._lock:
            self._by_id[subscription.id] = subscription
            self._topics.setdefault(subscription.topic, {})[subscription.id] = subscription
            if subscription.connection_id is not None:
                self._connections.setdefault(subscription.connection_id, set()).add(subscription.id)

    def remove(self, subscription_id: str) -> S | None:
        """Drop one subscription; returns ``None`` if it was already gone."""

        with self._lock:
            return self._remove_locked(subscription_id)

    def remove_connection(self, connection_id: str) -> list[S]:
        """Drop every subscription owned by ``connection_id``."""

        with self._lock:
            ids = list(self._connections.get(connection_id, ()))
            removed = [self._remove_locked(subscription_id) for subscription_id in ids]
            self._connections.pop(connection_id, None)
        return [subscription for subscription in removed if subscription is not None]

    def clear(self) -> list[S]:
        with self._lock:
            removed = list(self._by_id.values())
            self._by_id.clear()
            self._topics.clear()
            self._connections.clear()
        return removed

    def subscribers(self, topic: str) -> list[S]:
        with self._lock:
            return list(self._topics.get(topic, {}).values())

    def count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def connection_count(self, connection_id: str) -> int:
        with self._lock:
            return len(self._connections.get(connection_id, ()))

    def connection_topics(self, connection_id: str) -> set[str]:
        with self._lock:
            return {self._by_id[sid].topic for sid in self._connections.get(connection_id, ())}

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._topics)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    def _remove_locked(self, subscription_id: str) -> S | None:
        subscription = self._by_id.pop(subscription_id, None)
        if subscription is None:
            return None

        bucket = self._topics.get(subscription.topic)
        if bucket is not None:
            bucket.pop(subscription_id, None)
            if not bucket:
                self._topics.pop(subscription.topic, None)

        if subscription.connection_id is not None:
            owned = self._connections.get(subscription.connection_id)
            if owned is not None:
                owned.discard(subscription_id)
                if not owned:
                    self._connections.pop(subscription.connection_id, None)
        return subscription
