import asyncio
import json

import pytest
from fastapi.websockets import WebSocketState

from pairsignal.rooms import Connection
from pairsignal.signaling import SignalingService


class FakeWebSocket:
    """Records outbound frames; state attributes mirror Starlette's WebSocket."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []
        self.closed_with = None
        self.fail_sends = False
        self.hang_sends = False

    async def send_text(self, data):
        if self.hang_sends:
            # peer that stopped reading; the write never completes
            await asyncio.Event().wait()
        if self.fail_sends:
            raise RuntimeError("socket write failed")
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        self.closed_with = code
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self):
        self.client_state = WebSocketState.DISCONNECTED

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


@pytest.fixture
def service():
    return SignalingService(heartbeat_interval=0.01)


@pytest.fixture
def connect(service):
    async def _connect():
        ws = FakeWebSocket()
        connection = Connection(ws)
        await service.connect(connection)
        return connection, ws
    return _connect


@pytest.fixture
def pair(service, connect):
    async def _pair():
        c1, ws1 = await connect()
        c2, ws2 = await connect()
        await service.handle_text(c1, json.dumps({"type": "ready"}))
        await service.handle_text(c2, json.dumps({"type": "ready"}))
        return (c1, ws1), (c2, ws2)
    return _pair
