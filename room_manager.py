from typing import Dict, FrozenSet, List, Optional, Set
from datetime import datetime
from fastapi import WebSocket
import asyncio
import json
import logging
import uuid

logger = logging.getLogger(__name__)


class CloseFrame:
    """Outbox marker asking the writer task to close the transport."""

    def __init__(self, code: int = 1000, reason: str = ""):
        self.code = code
        self.reason = reason


class Connection:
    """One live WebSocket bound to a client id.

    Outbound messages are queued with ``send`` and written by ``pump``, so
    callers never await delivery.
    """

    def __init__(self, client_id: str, websocket: Optional[WebSocket] = None, outbox_size: int = 256):
        self.client_id = client_id
        self.connection_id = uuid.uuid4().hex
        self.websocket = websocket
        self.connected_at = datetime.now().isoformat()
        self.subscriptions: Set[str] = set()
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        # Close requested while the outbox was full; written once it drains
        self.pending_close: Optional[CloseFrame] = None
        self.closed = False

    def __repr__(self):
        return f"Connection({self.client_id!r}, id={self.connection_id[:8]})"

    def send(self, message: dict) -> bool:
        if self.closed:
            logger.debug(f"Dropping message for closed connection {self}")
            return False
        try:
            self.outbox.put_nowait(json.dumps(message))
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for {self}, dropping {message.get('action', 'message')}")
            return False
        return True

    def close(self, code: int = 1000, reason: str = ""):
        if self.closed:
            return
        self.closed = True
        frame = CloseFrame(code, reason)
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.pending_close = frame

    def subscribe(self, room_id: str):
        self.subscriptions.add(room_id)

    def unsubscribe(self, room_id: str):
        self.subscriptions.discard(room_id)

    async def pump(self):
        """Write queued messages to the websocket until closed or broken."""
        while True:
            if self.pending_close is not None and self.outbox.empty():
                item, self.pending_close = self.pending_close, None
            else:
                item = await self.outbox.get()
            if isinstance(item, CloseFrame):
                try:
                    await self.websocket.close(code=item.code, reason=item.reason)
                except Exception as e:
                    logger.debug(f"Error closing websocket for {self}: {e}")
                return
            try:
                await self.websocket.send_text(item)
            except Exception as e:
                # Delivery is best effort; the receive loop reports the disconnect
                logger.warning(f"Error sending to {self}: {e}")
                self.closed = True
                return


class ConnectionRegistry:
    """Client id -> the single live connection for that id."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def __len__(self):
        return len(self._connections)

    def __contains__(self, client_id: str):
        return client_id in self._connections

    def register(self, connection: Connection) -> Optional[Connection]:
        previous = self._connections.get(connection.client_id)
        if previous is not None and previous is not connection:
            logger.warning(f"Registering {connection} over live {previous}")
        self._connections[connection.client_id] = connection
        logger.info(f"Registered {connection} (total: {len(self._connections)})")
        return previous

    def lookup(self, client_id: str) -> Optional[Connection]:
        return self._connections.get(client_id)

    def unregister(self, client_id: str, connection: Optional[Connection] = None) -> bool:
        current = self._connections.get(client_id)
        if current is None:
            return False
        if connection is not None and current is not connection:
            return False
        del self._connections[client_id]
        logger.info(f"Unregistered {current} (total: {len(self._connections)})")
        return True

    def is_current(self, connection: Connection) -> bool:
        return self._connections.get(connection.client_id) is connection

    def client_ids(self) -> List[str]:
        return list(self._connections)


class RoomDirectory:
    """Room id -> member client ids, with a per-client mirror of joined rooms."""

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def __len__(self):
        return len(self._rooms)

    def __contains__(self, room_id: str):
        return room_id in self._rooms

    def join(self, room_id: str, client_id: str) -> bool:
        members = self._rooms.setdefault(room_id, set())
        if client_id in members:
            return False
        members.add(client_id)
        self._memberships.setdefault(client_id, set()).add(room_id)
        return True

    def leave(self, room_id: str, client_id: str) -> bool:
        members = self._rooms.get(room_id)
        if not members or client_id not in members:
            return False
        members.discard(client_id)
        if not members:
            del self._rooms[room_id]
            logger.debug(f"Room {room_id} is empty, dropping it")

        rooms = self._memberships.get(client_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._memberships[client_id]
        return True

    def is_member(self, room_id: str, client_id: str) -> bool:
        return client_id in self._rooms.get(room_id, ())

    def members_of(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room_id, ()))

    def rooms_of(self, client_id: str) -> FrozenSet[str]:
        return frozenset(self._memberships.get(client_id, ()))

    def room_ids(self) -> List[str]:
        return list(self._rooms)
