import asyncio
import json

from conftest import drain
from room_manager import CloseFrame, Connection, ConnectionRegistry, RoomDirectory


class FakeWebSocket:
    def __init__(self, fail_sends=False):
        self.fail_sends = fail_sends
        self.sent = []
        self.closed_with = None

    async def send_text(self, text):
        if self.fail_sends:
            raise RuntimeError("transport gone")
        self.sent.append(text)

    async def close(self, code=1000, reason=""):
        self.closed_with = (code, reason)


def test_registry_lookup_and_unregister():
    registry = ConnectionRegistry()
    alice = Connection("alice")

    assert registry.lookup("alice") is None
    assert registry.register(alice) is None
    assert registry.lookup("alice") is alice
    assert "alice" in registry
    assert len(registry) == 1

    assert registry.unregister("alice") is True
    assert registry.lookup("alice") is None
    assert registry.unregister("alice") is False


def test_registry_register_returns_displaced_connection():
    registry = ConnectionRegistry()
    first = Connection("alice")
    second = Connection("alice")

    registry.register(first)
    assert registry.register(second) is first
    assert registry.lookup("alice") is second
    assert registry.is_current(second)
    assert not registry.is_current(first)


def test_registry_unregister_ignores_other_connection():
    registry = ConnectionRegistry()
    old = Connection("alice")
    new = Connection("alice")
    registry.register(new)

    assert registry.unregister("alice", old) is False
    assert registry.lookup("alice") is new
    assert registry.unregister("alice", new) is True


def test_directory_join_rejects_duplicates():
    rooms = RoomDirectory()

    assert rooms.join("r1", "alice") is True
    assert rooms.join("r1", "alice") is False
    assert rooms.members_of("r1") == {"alice"}
    assert rooms.rooms_of("alice") == {"r1"}


def test_directory_members_snapshot_is_detached():
    rooms = RoomDirectory()
    rooms.join("r1", "alice")
    snapshot = rooms.members_of("r1")

    rooms.join("r1", "bob")

    assert snapshot == {"alice"}
    assert rooms.members_of("r1") == {"alice", "bob"}


def test_directory_leave_drops_empty_rooms():
    rooms = RoomDirectory()
    rooms.join("r1", "alice")
    rooms.join("r2", "alice")
    rooms.join("r1", "bob")

    assert rooms.leave("r1", "alice") is True
    assert rooms.leave("r1", "alice") is False
    assert rooms.members_of("r1") == {"bob"}
    assert rooms.rooms_of("alice") == {"r2"}

    rooms.leave("r2", "alice")
    assert "r2" not in rooms
    assert rooms.rooms_of("alice") == frozenset()
    assert rooms.room_ids() == ["r1"]


def test_directory_unknown_room_is_empty():
    rooms = RoomDirectory()
    assert rooms.members_of("nowhere") == frozenset()
    assert rooms.leave("nowhere", "alice") is False
    assert not rooms.is_member("nowhere", "alice")


def test_connection_send_queues_json():
    connection = Connection("alice")
    assert connection.send({"action": "remove-peer", "payload": {"peerId": "bob"}})
    assert drain(connection) == [{"action": "remove-peer", "payload": {"peerId": "bob"}}]


def test_connection_drops_when_outbox_full():
    connection = Connection("alice", outbox_size=2)
    assert connection.send({"n": 1})
    assert connection.send({"n": 2})
    assert not connection.send({"n": 3})
    assert drain(connection) == [{"n": 1}, {"n": 2}]


def test_connection_close_stops_further_sends():
    connection = Connection("alice")
    connection.close(4000, "bye")
    connection.close(4000, "again")

    assert not connection.send({"n": 1})
    queued = drain(connection)
    assert len(queued) == 1
    assert isinstance(queued[0], CloseFrame)
    assert queued[0].code == 4000


def test_pump_writes_then_closes():
    websocket = FakeWebSocket()
    connection = Connection("alice", websocket)
    connection.send({"action": "add-peer", "payload": {"peerId": "bob", "createOffer": True}})
    connection.close(4000, "Superseded")

    asyncio.run(connection.pump())

    assert [json.loads(text) for text in websocket.sent] == [
        {"action": "add-peer", "payload": {"peerId": "bob", "createOffer": True}}
    ]
    assert websocket.closed_with == (4000, "Superseded")


def test_pump_stops_on_send_failure():
    websocket = FakeWebSocket(fail_sends=True)
    connection = Connection("alice", websocket)
    connection.send({"n": 1})

    asyncio.run(connection.pump())

    assert connection.closed
    assert not connection.send({"n": 2})


def test_close_is_kept_when_outbox_full():
    connection = Connection("alice", outbox_size=1)
    connection.send({"n": 1})
    connection.close(4000, "Superseded")

    queued = drain(connection)
    assert queued[0] == {"n": 1}
    assert isinstance(queued[1], CloseFrame)
    assert queued[1].code == 4000


def test_pump_closes_after_draining_full_outbox():
    websocket = FakeWebSocket()
    connection = Connection("alice", websocket, outbox_size=2)
    connection.send({"n": 1})
    connection.send({"n": 2})
    connection.close(4000, "Superseded")

    asyncio.run(connection.pump())

    assert [json.loads(text) for text in websocket.sent] == [{"n": 1}, {"n": 2}]
    assert websocket.closed_with == (4000, "Superseded")
    assert connection.pending_close is None
