from __future__ import annotations

import logging
import sys

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import Response
import uvicorn

from . import config
from .models import HealthResponse, RoomStateResponse
from .rooms import Connection
from .signaling import SignalingService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(config.LOG_FILE) if config.LOG_TO_FILE else logging.NullHandler()
    ]
)
logger = logging.getLogger("pairsignal")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0"
}

app = FastAPI(
    title="Pair Signal",
    version="1.0",
    description="Two-party WebRTC signaling relay with heartbeat-driven cleanup"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if config.TRUSTED_HOSTS:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=config.TRUSTED_HOSTS)

service = SignalingService()


@app.on_event("startup")
async def on_startup():
    logger.info("Starting Pair Signal server")
    service.start_heartbeat()
    logger.info(f"Heartbeat started, interval={service.heartbeat_interval}s")


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("Shutting down Pair Signal server")
    await service.stop_heartbeat()
    await service.close_all(code=1001, reason="Server shutdown")


@app.get("/", response_model=HealthResponse)
async def health(response: Response):
    response.headers.update(NO_CACHE_HEADERS)
    return HealthResponse()


@app.get("/room-state", response_model=RoomStateResponse)
async def room_state(response: Response):
    """Polling fallback for clients that cannot hold a WebSocket open."""
    response.headers.update(NO_CACHE_HEADERS)
    return RoomStateResponse(participants=service.room.participants, capacity=service.room.capacity)


@app.websocket("/")
async def ws_signaling(ws: WebSocket):
    await ws.accept()
    connection = Connection(ws)
    await service.connect(connection)

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"Client disconnected: {connection.connection_id}, code={message.get('code')}")
                break
            await service.handle_text(connection, message.get("text") or message.get("bytes"))
    except WebSocketDisconnect as e:
        logger.info(f"Client disconnected: {connection.connection_id}, code={e.code}")
    except Exception as e:
        logger.warning(f"WebSocket connection error: {connection.connection_id}, error={e}")
    finally:
        await service.disconnect(connection, reason="socket-close")


def main():
    try:
        uvicorn.run(
            app,
            host=config.HOST,
            port=config.PORT,
            log_level=config.LOG_LEVEL.lower(),
            access_log=True,
            timeout_keep_alive=30,
            timeout_graceful_shutdown=30,
            # Protocol-level liveness: dead sockets are closed within one to two intervals
            ws_ping_interval=config.HEARTBEAT_INTERVAL_SECONDS,
            ws_ping_timeout=config.HEARTBEAT_INTERVAL_SECONDS
        )
    except SystemExit as e:
        # uvicorn logs bind errors itself and exits with status 1
        if e.code:
            logger.error(f"Failed to start server on {config.HOST}:{config.PORT} (exit status {e.code})")
            sys.exit(1)
        raise


if __name__ == "__main__":
    main()
