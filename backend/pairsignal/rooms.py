from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi.websockets import WebSocketState

from .models import ROOM_CAPACITY, RoomStateMessage


class TransportState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """One accepted WebSocket plus the liveness bookkeeping around it."""

    ws: Any
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    connected_at: float = field(default_factory=lambda: time.time())
    is_alive: bool = True
    # set once the client takes part in application-level ping/pong
    app_heartbeat: bool = False
    terminating: bool = False

    @property
    def state(self) -> TransportState:
        client_state = self.ws.client_state
        application_state = self.ws.application_state
        if WebSocketState.DISCONNECTED in (client_state, application_state):
            return TransportState.CLOSED
        if self.terminating:
            return TransportState.CLOSING
        if client_state == WebSocketState.CONNECTED and application_state == WebSocketState.CONNECTED:
            return TransportState.OPEN
        return TransportState.CLOSED

    async def send(self, payload: Dict[str, Any]) -> None:
        await self.ws.send_text(json.dumps(payload))

    async def terminate(self, code: int = 1001, reason: str = "") -> None:
        await self.ws.close(code=code, reason=reason)


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, connection: Connection) -> bool:
        if connection.connection_id in self._connections:
            return False
        connection.is_alive = True
        self._connections[connection.connection_id] = connection
        return True

    def unregister(self, connection: Connection) -> bool:
        return self._connections.pop(connection.connection_id, None) is not None

    def for_each_live(self, fn: Callable[[Connection], Any]) -> None:
        # Snapshot first: fn may unregister connections.
        for connection in list(self._connections.values()):
            fn(connection)

    def snapshot(self) -> List[Connection]:
        return list(self._connections.values())

    def __contains__(self, connection: Connection) -> bool:
        return self._connections.get(connection.connection_id) is connection

    def __len__(self) -> int:
        return len(self._connections)


class AdmitRefusal(str, Enum):
    ALREADY_MEMBER = "already_member"
    ROOM_FULL = "room_full"


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: Optional[AdmitRefusal] = None
    # True only for the admission that moved the room from non-full to full
    filled: bool = False


@dataclass
class Room:
    capacity: int = ROOM_CAPACITY
    members: Dict[str, Connection] = field(default_factory=dict)

    def try_admit(self, connection: Connection) -> Admission:
        if connection.connection_id in self.members:
            return Admission(False, AdmitRefusal.ALREADY_MEMBER)
        if len(self.members) >= self.capacity:
            return Admission(False, AdmitRefusal.ROOM_FULL)
        self.members[connection.connection_id] = connection
        return Admission(True, filled=self.is_full)

    def release(self, connection: Connection) -> bool:
        return self.members.pop(connection.connection_id, None) is not None

    def others(self, connection: Connection) -> List[Connection]:
        return [m for m in self.members.values() if m is not connection]

    @property
    def initiator(self) -> Optional[Connection]:
        return next(iter(self.members.values()), None)

    @property
    def participants(self) -> int:
        return len(self.members)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    def __contains__(self, connection: Connection) -> bool:
        return connection.connection_id in self.members

    def snapshot(self) -> RoomStateMessage:
        return RoomStateMessage(participants=self.participants, capacity=self.capacity)
