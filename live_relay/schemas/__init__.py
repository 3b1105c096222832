"""
live_relay.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the relay.
"""
from live_relay.schemas.events import EventEnvelope, now_ms
from live_relay.schemas.relay import (
    ConnectResponse,
    DisconnectResponse,
    ErrorResponse,
    RoomRequest,
    StatusResponse,
)

__all__ = [
    "ConnectResponse",
    "DisconnectResponse",
    "ErrorResponse",
    "EventEnvelope",
    "RoomRequest",
    "StatusResponse",
    "now_ms",
]
