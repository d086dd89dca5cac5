from fastapi.websockets import WebSocketState

from pairsignal.rooms import AdmitRefusal, Connection, ConnectionRegistry, Room, TransportState

from conftest import FakeWebSocket


def make_connection():
    return Connection(FakeWebSocket())


def test_register_is_idempotent_and_sets_liveness():
    registry = ConnectionRegistry()
    connection = make_connection()
    connection.is_alive = False

    assert registry.register(connection)
    assert connection.is_alive
    connection.is_alive = False
    assert not registry.register(connection)
    assert not connection.is_alive
    assert len(registry) == 1


def test_unregister_reports_presence():
    registry = ConnectionRegistry()
    connection = make_connection()
    registry.register(connection)

    assert registry.unregister(connection)
    assert not registry.unregister(connection)
    assert connection not in registry


def test_for_each_live_tolerates_removal():
    registry = ConnectionRegistry()
    connections = [make_connection() for _ in range(3)]
    for c in connections:
        registry.register(c)

    seen = []

    def visit(c):
        seen.append(c)
        registry.unregister(c)

    registry.for_each_live(visit)
    assert seen == connections
    assert len(registry) == 0


def test_room_capacity_and_fill_transition():
    room = Room()
    a, b, c = make_connection(), make_connection(), make_connection()

    first = room.try_admit(a)
    assert first.admitted and not first.filled
    second = room.try_admit(b)
    assert second.admitted and second.filled

    again = room.try_admit(a)
    assert not again.admitted and again.reason is AdmitRefusal.ALREADY_MEMBER
    full = room.try_admit(c)
    assert not full.admitted and full.reason is AdmitRefusal.ROOM_FULL
    assert room.participants == 2


def test_initiator_is_first_admitted():
    room = Room()
    a, b = make_connection(), make_connection()
    room.try_admit(a)
    room.try_admit(b)
    assert room.initiator is a

    room.release(a)
    assert room.initiator is b
    assert room.others(b) == []


def test_release_reports_membership():
    room = Room()
    a = make_connection()
    room.try_admit(a)
    assert room.release(a)
    assert not room.release(a)
    assert room.snapshot().participants == 0


def test_transport_state_mapping():
    ws = FakeWebSocket()
    connection = Connection(ws)
    assert connection.state is TransportState.OPEN

    connection.terminating = True
    assert connection.state is TransportState.CLOSING

    ws.client_state = WebSocketState.DISCONNECTED
    assert connection.state is TransportState.CLOSED


def test_transport_closed_after_server_close():
    ws = FakeWebSocket()
    ws.application_state = WebSocketState.DISCONNECTED
    assert Connection(ws).state is TransportState.CLOSED
