"""Expose ORM models."""
from .agent import Agent
from .call import Call, CallDirection, CallStatus
from .phone_number import PhoneNumber
from .transcript import Speaker, TranscriptEntry

__all__ = [
    "Agent",
    "Call",
    "CallDirection",
    "CallStatus",
    "PhoneNumber",
    "Speaker",
    "TranscriptEntry",
]
