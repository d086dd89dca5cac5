import asyncio
import json

from fastapi.websockets import WebSocketState

from pairsignal.rooms import Connection
from pairsignal.signaling import SignalingService


class RecordingSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []

    async def send_text(self, data):
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        self.application_state = WebSocketState.DISCONNECTED


async def main():
    service = SignalingService()
    sockets = [RecordingSocket() for _ in range(3)]
    c1, c2, c3 = [Connection(ws) for ws in sockets]
    for c in (c1, c2, c3):
        await service.connect(c)

    ready = json.dumps({"type": "ready"})
    await service.handle_text(c1, ready)
    await service.handle_text(c2, ready)
    await service.handle_text(c3, ready)

    starts = [ws for ws in sockets if {"type": "startOffer"} in ws.sent]
    if starts != [sockets[0]]:
        raise SystemExit("FAIL: startOffer should go to the first ready client only")
    print("OK: first ready client was told to start the offer")

    if sockets[2].sent[-2]["type"] != "roomFull" or service.room.participants != 2:
        raise SystemExit("FAIL: third client should be refused with roomFull")
    print("OK: third client refused, room holds 2")

    # Simulate the first client's socket dropping
    sockets[0].client_state = WebSocketState.DISCONNECTED
    await service.disconnect(c1)
    if sockets[1].sent[-1] != {"type": "hangup"}:
        raise SystemExit("FAIL: survivor was not told about the hangup")
    if await service.disconnect(c1):
        raise SystemExit("FAIL: repeated cleanup should report no membership")
    print(f"OK: survivor notified, participants={service.room.participants}")

if __name__ == "__main__":
    asyncio.run(main())
