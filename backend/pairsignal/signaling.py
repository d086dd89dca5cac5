from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import HEARTBEAT_INTERVAL_SECONDS, SEND_TIMEOUT_SECONDS
from .models import (
    ErrorMessage,
    HangupMessage,
    HeartbeatMessage,
    LeaveMessage,
    MalformedMessage,
    PingMessage,
    PongMessage,
    ReadyMessage,
    RelayMessage,
    RoomFullMessage,
    StartOfferMessage,
    StatusMessage,
    parse_inbound,
)
from .rooms import AdmitRefusal, Connection, ConnectionRegistry, Room, TransportState

logger = logging.getLogger("pairsignal.signaling")


@dataclass
class Send:
    connection: Connection
    payload: Dict[str, Any]


@dataclass
class Ping:
    connection: Connection


@dataclass
class Terminate:
    connection: Connection
    code: int = 1001
    reason: str = "Heartbeat timeout"


Effect = Union[Send, Ping, Terminate]


class SignalingService:
    """Owns the registry and the room; every mutation goes through here.

    State transitions are synchronous methods that return the outbound
    effects they imply. The async methods take the service lock, run one
    transition and deliver its effects in order, so no two transitions
    ever interleave.
    """

    def __init__(
        self,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
    ):
        self.registry = ConnectionRegistry()
        self.room = Room()
        self.heartbeat_interval = heartbeat_interval
        self.send_timeout = send_timeout
        self._lock = asyncio.Lock()
        self._heartbeat_task: Optional[asyncio.Task] = None

    # --- async facade ---

    async def connect(self, connection: Connection) -> None:
        async with self._lock:
            await self._deliver(self.on_connect(connection))

    async def handle_text(self, connection: Connection, raw: Any) -> None:
        async with self._lock:
            await self._deliver(self.on_message(connection, raw))

    async def disconnect(self, connection: Connection, reason: str = "socket-close") -> bool:
        async with self._lock:
            was_member, effects = self.cleanup(connection, notify_peers=True, reason=reason)
            await self._deliver(effects)
            return was_member

    async def sweep(self) -> None:
        async with self._lock:
            await self._deliver(self.heartbeat_sweep())

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close_all(self, code: int = 1001, reason: str = "Server shutdown") -> None:
        async with self._lock:
            for connection in self.registry.snapshot():
                try:
                    await asyncio.wait_for(connection.terminate(code=code, reason=reason), timeout=self.send_timeout)
                except Exception as e:
                    logger.warning(f"Error closing WebSocket {connection.connection_id}: {e}")

    async def _heartbeat_loop(self):
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Heartbeat sweep failed")

    async def _deliver(self, effects: List[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, Send):
                await self._send(effect.connection, effect.payload)
            elif isinstance(effect, Ping):
                if not await self._send(effect.connection, PingMessage().model_dump()):
                    logger.warning(f"Failed to ping client {effect.connection.connection_id}")
                    _, more = self.cleanup(effect.connection, notify_peers=True, reason="heartbeat-ping-error")
                    await self._deliver(more + [self._terminate(effect.connection)])
            elif isinstance(effect, Terminate):
                try:
                    await asyncio.wait_for(
                        effect.connection.terminate(code=effect.code, reason=effect.reason),
                        timeout=self.send_timeout,
                    )
                except Exception as e:
                    logger.warning(f"Failed to terminate {effect.connection.connection_id}: {e}")

    async def _send(self, connection: Connection, payload: Dict[str, Any]) -> bool:
        if connection.state != TransportState.OPEN:
            return False
        try:
            await asyncio.wait_for(connection.send(payload), timeout=self.send_timeout)
            logger.debug(f"Sent {payload.get('type')!r} to {connection.connection_id}")
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send to {connection.connection_id} timed out after {self.send_timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Failed to send WS message to {connection.connection_id}: {e}")
            return False

    # --- transitions ---

    def on_connect(self, connection: Connection) -> List[Effect]:
        self.registry.register(connection)
        logger.info(f"Client connected: {connection.connection_id}, connected={len(self.registry)}")
        return [Send(connection, self.room.snapshot().model_dump())]

    def on_message(self, connection: Connection, raw: Any) -> List[Effect]:
        # Any inbound frame proves the client is still there.
        connection.is_alive = True
        try:
            message = parse_inbound(raw)
        except MalformedMessage as e:
            logger.warning(f"Malformed message from {connection.connection_id}: {e.message}")
            return [Send(connection, ErrorMessage(code=e.code, message=e.message).model_dump())]

        logger.debug(f"Message from {connection.connection_id}: {message!r}")

        if isinstance(message, ReadyMessage):
            return self.on_ready(connection)
        if isinstance(message, LeaveMessage):
            return self.on_leave(connection, message.type)
        if isinstance(message, HeartbeatMessage):
            return self.on_heartbeat(connection, message)
        if isinstance(message, RelayMessage):
            if connection not in self.room:
                logger.warning(f"Dropping {message.type!r} from non-member {connection.connection_id}")
                return []
            return self.relay(connection, message.payload)
        return []

    def on_heartbeat(self, connection: Connection, message: HeartbeatMessage) -> List[Effect]:
        """Opt the connection into application-level heartbeats.

        Browsers answer protocol pings on their own, so by default liveness
        is left to the transport. A client that sends ``ping`` or ``pong``
        is sent ``{"type": "ping"}`` every sweep from then on and must
        keep answering. A client ``ping`` is echoed back as a ``pong``.
        """
        connection.app_heartbeat = True
        if message.type == "ping":
            return [Send(connection, PongMessage(ts=message.ts).model_dump(exclude_none=True))]
        return []

    def on_ready(self, connection: Connection) -> List[Effect]:
        effects = self.prune_closed()

        if connection not in self.registry:
            logger.warning(f"Ignoring ready from unregistered connection {connection.connection_id}")
            return effects

        admission = self.room.try_admit(connection)
        if admission.reason is AdmitRefusal.ALREADY_MEMBER:
            return effects + [Send(connection, self.room.snapshot().model_dump())]
        if admission.reason is AdmitRefusal.ROOM_FULL:
            logger.info(f"Room full, refusing {connection.connection_id}")
            return effects + [
                Send(connection, RoomFullMessage().model_dump()),
                Send(connection, self.room.snapshot().model_dump()),
            ]

        logger.info(f"Client {connection.connection_id} joined room, participants={self.room.participants}")
        effects += self.broadcast_room_state()
        if admission.filled:
            effects += self.start_offer()
        return effects

    def on_leave(self, connection: Connection, kind: str) -> List[Effect]:
        was_member, effects = self.release(connection)
        if not was_member:
            return []
        logger.info(
            f"Room slot released: reason=client-{kind}, "
            f"connection={connection.connection_id}, participants={self.room.participants}"
        )
        return effects + self.relay(connection, HangupMessage().model_dump())

    def start_offer(self) -> List[Effect]:
        initiator = self.room.initiator
        logger.info(f"Both clients ready, starting offer phase with {initiator.connection_id}")
        effects: List[Effect] = [Send(initiator, StartOfferMessage().model_dump())]
        status = StatusMessage().model_dump()
        effects += [Send(member, status) for member in self.room.members.values()]
        return effects

    def release(self, connection: Connection) -> Tuple[bool, List[Effect]]:
        """Drop the connection from the room; broadcast the snapshot if it was there."""
        if not self.room.release(connection):
            return False, []
        return True, self.broadcast_room_state()

    def relay(self, source: Connection, payload: Dict[str, Any]) -> List[Effect]:
        effects: List[Effect] = []
        for target in self.room.others(source):
            if target.state != TransportState.OPEN:
                _, purged = self.cleanup(target, notify_peers=False, reason="relay-target-not-open")
                effects += purged
                continue
            effects.append(Send(target, payload))
        return effects

    def broadcast_room_state(self) -> List[Effect]:
        payload = self.room.snapshot().model_dump()
        effects: List[Effect] = []
        self.registry.for_each_live(lambda c: effects.append(Send(c, payload)))
        return effects

    def cleanup(
        self, connection: Connection, notify_peers: bool = False, reason: str = "unknown"
    ) -> Tuple[bool, List[Effect]]:
        """Forget a connection everywhere. Returns (was_member, effects); safe to repeat."""
        was_connected = self.registry.unregister(connection)
        was_member, effects = self.release(connection)

        if was_member or was_connected:
            logger.info(
                f"Client cleanup: reason={reason}, connection={connection.connection_id}, "
                f"was_member={was_member}, was_connected={was_connected}, "
                f"notify_peers={notify_peers}, state={connection.state.value}, "
                f"participants={self.room.participants}"
            )

        if notify_peers and was_member:
            effects += self.relay(connection, HangupMessage().model_dump())
        return was_member, effects

    def prune_closed(self) -> List[Effect]:
        effects: List[Effect] = []
        for connection in self.registry.snapshot():
            if connection.state in (TransportState.CLOSING, TransportState.CLOSED):
                _, purged = self.cleanup(connection, notify_peers=True, reason="prune-not-open")
                effects += purged
        return effects

    def heartbeat_sweep(self) -> List[Effect]:
        effects: List[Effect] = []
        for connection in self.registry.snapshot():
            if connection not in self.registry:
                # purged earlier in this sweep
                continue
            if connection.state != TransportState.OPEN:
                _, purged = self.cleanup(connection, notify_peers=True, reason="heartbeat-not-open")
                effects += purged
                continue
            if not connection.app_heartbeat:
                # protocol pings from the ASGI server close dead sockets
                continue
            if not connection.is_alive:
                logger.warning(f"Stale WebSocket detected, terminating {connection.connection_id}")
                _, purged = self.cleanup(connection, notify_peers=True, reason="heartbeat-timeout")
                effects += purged + [self._terminate(connection)]
                continue
            connection.is_alive = False
            effects.append(Ping(connection))
        return effects

    def _terminate(self, connection: Connection) -> Terminate:
        connection.terminating = True
        return Terminate(connection)
