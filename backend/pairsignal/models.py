from __future__ import annotations

import json
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ROOM_CAPACITY = 2


class MalformedMessage(ValueError):
    """Inbound frame that is not JSON or carries no ``type`` tag."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# --- Inbound ---

class ReadyMessage(BaseModel):
    type: Literal["ready"] = "ready"


class LeaveMessage(BaseModel):
    type: Literal["leave", "hangup"] = "leave"


class HeartbeatMessage(BaseModel):
    """Optional application-level liveness frame. Never relayed."""

    type: Literal["ping", "pong"]
    ts: Optional[Any] = None


class RelayMessage(BaseModel):
    """Any other tagged message; forwarded to the peer exactly as received."""

    model_config = ConfigDict(frozen=True)

    payload: Dict[str, Any]

    @property
    def type(self) -> Any:
        return self.payload["type"]


InboundMessage = ReadyMessage | LeaveMessage | HeartbeatMessage | RelayMessage


def parse_inbound(raw: Any) -> InboundMessage:
    """Decode one text frame into a tagged inbound message.

    Raises MalformedMessage when the frame is not valid JSON or has no
    truthy ``type`` field. Unknown tags become a RelayMessage carrying the
    untouched decoded payload.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedMessage("bad_json", "Invalid JSON payload")

    if not isinstance(data, dict) or not data.get("type"):
        raise MalformedMessage("missing_type", "Missing message type")

    kind = data["type"]
    if kind == "ready":
        return ReadyMessage()
    if kind in ("leave", "hangup"):
        return LeaveMessage(type=kind)
    if kind in ("ping", "pong"):
        return HeartbeatMessage(type=kind, ts=data.get("ts"))
    return RelayMessage(payload=data)


# --- Outbound ---

class RoomStateMessage(BaseModel):
    type: Literal["roomState"] = "roomState"
    participants: int = Field(..., ge=0)
    capacity: int = ROOM_CAPACITY


class StartOfferMessage(BaseModel):
    type: Literal["startOffer"] = "startOffer"


class StatusMessage(BaseModel):
    type: Literal["status"] = "status"
    message: str = "Connecting..."


class RoomFullMessage(BaseModel):
    type: Literal["roomFull"] = "roomFull"
    message: str = "Room is full"


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    code: str
    message: str


class HangupMessage(BaseModel):
    type: Literal["hangup"] = "hangup"


class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"
    ts: Optional[Any] = None


# --- HTTP ---

class HealthResponse(BaseModel):
    ok: bool = True


class RoomStateResponse(BaseModel):
    participants: int
    capacity: int = ROOM_CAPACITY
