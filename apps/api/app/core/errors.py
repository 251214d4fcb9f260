"""Error taxonomy shared by the webhook, lifecycle and realtime layers."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.call import CallStatus


class CallboardError(Exception):
    """Base class for domain errors."""


class EventValidationError(CallboardError, ValueError):
    """Raised when an inbound provider event is malformed."""


class NotFoundError(CallboardError, LookupError):
    """Raised when a referenced call, phone number or agent does not exist."""


class BusConnectionError(CallboardError, ConnectionError):
    """Raised when the realtime bus cannot be reached within the retry budget."""


class ProviderError(CallboardError):
    """Raised when the telephony provider API rejects or fails a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransitionRejected(CallboardError):
    """Raised when an event would move a call along a disallowed edge."""

    def __init__(self, current: "CallStatus", target: "CallStatus", reason: str = "") -> None:
        detail = f"{current.value} -> {target.value}"
        if reason:
            detail = f"{detail} ({reason})"
        super().__init__(detail)
        self.current = current
        self.target = target
