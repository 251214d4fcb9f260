"""Dependency helpers resolving the long-lived services stored on ``app.state``."""
from __future__ import annotations

from fastapi.requests import HTTPConnection

from ..services.bus import EventBus
from ..services.lifecycle import CallLifecycle
from ..services.metrics import MetricsAggregator
from ..services.vapi import VapiClient


def get_bus(conn: HTTPConnection) -> EventBus:
    return conn.app.state.bus


def get_lifecycle(conn: HTTPConnection) -> CallLifecycle:
    return conn.app.state.lifecycle


def get_metrics(conn: HTTPConnection) -> MetricsAggregator:
    return conn.app.state.metrics


def get_vapi(conn: HTTPConnection) -> VapiClient:
    return conn.app.state.vapi
