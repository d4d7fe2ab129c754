from typing import Callable, Dict, List, Optional, Type, Union
from fastapi import Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ValidationError
from room_manager import Connection, ConnectionRegistry, RoomDirectory
from models.schemas import (
    AddPeerPayload,
    IceCandidatePayload,
    JoinPayload,
    LeavePayload,
    ParticipantInfo,
    RelayICEPayload,
    RelaySDPPayload,
    RemovePeerPayload,
    RoomAnnouncement,
    RoomInfo,
    SessionDescriptionPayload,
    SignalAction,
    SignalEnvelope,
)
from config.signaling_config import SignalingSettings
import asyncio
import json
import logging

logger = logging.getLogger(__name__)

SUPERSEDED_CLOSE_CODE = 4000


class MalformedMessageError(ValueError):
    """Inbound frame that cannot be turned into a signaling envelope."""


def parse_message(raw: Union[str, bytes]) -> SignalEnvelope:
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder allows
        raise MalformedMessageError(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedMessageError(f"envelope must be an object, got {type(data).__name__}")
    try:
        return SignalEnvelope.model_validate(data)
    except ValidationError as e:
        raise MalformedMessageError(f"invalid envelope: {e.errors()}")


def build_message(action: SignalAction, payload: BaseModel) -> dict:
    return {"action": action.value, "payload": payload.model_dump()}


class SignalingRelay:
    """Owns the connection registry and room directory for one process.

    Every handler runs synchronously: sends only enqueue onto connection
    outboxes, so a join's snapshot, notifications and membership update
    happen without yielding to the event loop.
    """

    def __init__(self, settings: Optional[SignalingSettings] = None):
        self.settings = settings or SignalingSettings()
        self.registry = ConnectionRegistry()
        self.rooms = RoomDirectory()
        self._handlers: Dict[str, Callable] = {
            SignalAction.JOIN.value: self.handle_join,
            SignalAction.LEAVE.value: self.handle_leave,
            SignalAction.RELAY_SDP.value: self.handle_relay_sdp,
            SignalAction.RELAY_ICE.value: self.handle_relay_ice,
        }
        self._payload_models: Dict[str, Type[BaseModel]] = {
            SignalAction.JOIN.value: JoinPayload,
            SignalAction.LEAVE.value: LeavePayload,
            SignalAction.RELAY_SDP.value: RelaySDPPayload,
            SignalAction.RELAY_ICE.value: RelayICEPayload,
        }

    # Lifecycle

    def connect(self, client_id: str, websocket: Optional[WebSocket] = None) -> Connection:
        connection = Connection(client_id, websocket, outbox_size=self.settings.outbox_size)
        self.on_connect(connection)
        return connection

    def on_connect(self, connection: Connection):
        existing = self.registry.lookup(connection.client_id)
        if existing is not None and existing is not connection:
            logger.info(f"{connection.client_id} reconnected, evicting {existing}")
            self._teardown(existing)
            if self.settings.close_superseded:
                existing.close(SUPERSEDED_CLOSE_CODE, "Superseded by a newer connection")
        self.registry.register(connection)

    def on_disconnect(self, connection: Connection) -> bool:
        if not self.registry.is_current(connection):
            logger.debug(f"Ignoring disconnect of superseded {connection}")
            return False
        self._teardown(connection)
        return True

    def _teardown(self, connection: Connection):
        left = self.leave_rooms(connection)
        self.registry.unregister(connection.client_id, connection)
        logger.info(f"{connection} cleaned up, left rooms: {left}")

    # Dispatch

    def on_message(self, connection: Connection, raw: Union[str, bytes]):
        if not self.registry.is_current(connection):
            logger.debug(f"Dropping message from superseded {connection}")
            return
        try:
            envelope = parse_message(raw)
        except MalformedMessageError as e:
            logger.warning(f"Malformed message from {connection}: {e}")
            return

        handler = self._handlers.get(envelope.action)
        if handler is None:
            logger.warning(f"Unknown action from {connection}: {envelope.action}")
            return

        try:
            payload = self._payload_models[envelope.action].model_validate(envelope.payload or {})
        except ValidationError as e:
            logger.warning(f"Invalid {envelope.action} payload from {connection}: {e.errors()}")
            return

        logger.debug(f"{connection} -> {envelope.action}")
        handler(connection, payload)

    # Actions

    def handle_join(self, connection: Connection, payload: JoinPayload):
        room_id = payload.roomId
        user_id = connection.client_id

        if self.rooms.is_member(room_id, user_id):
            logger.warning(f"{user_id} already joined to {room_id}")
            return

        members = self.rooms.members_of(room_id)
        for member_id in members:
            remote = self.registry.lookup(member_id)
            if remote is None:
                logger.warning(f"Member {member_id} of {room_id} has no live connection, skipping")
                continue
            remote.send(build_message(
                SignalAction.ADD_PEER, AddPeerPayload(peerId=user_id, createOffer=False)
            ))
            connection.send(build_message(
                SignalAction.ADD_PEER, AddPeerPayload(peerId=member_id, createOffer=True)
            ))

        if self.settings.announce_joins:
            announcement = RoomAnnouncement(message=f"{user_id} joined!")
            self.publish(room_id, announcement.model_dump(), sender=connection)

        self.rooms.join(room_id, user_id)
        connection.subscribe(room_id)
        logger.info(f"{user_id} joined {room_id} ({len(members) + 1} members)")

    def handle_leave(self, connection: Connection, payload: LeavePayload):
        self.leave_rooms(connection, payload.roomId)

    def leave_rooms(self, connection: Connection, room_id: Optional[str] = None) -> List[str]:
        """Leave ``room_id`` plus every room the connection is subscribed to.

        Returns the rooms actually left. The connection stays registered.
        """
        if not self.registry.is_current(connection):
            return []

        user_id = connection.client_id
        room_ids = set(connection.subscriptions) | self.rooms.rooms_of(user_id)
        if room_id is not None:
            room_ids.add(room_id)

        left = []
        for subscribed_room_id in sorted(room_ids):
            if not self.rooms.is_member(subscribed_room_id, user_id):
                if subscribed_room_id == room_id:
                    logger.warning(f"{user_id} asked to leave {room_id} without being a member")
                connection.unsubscribe(subscribed_room_id)
                continue

            for member_id in self.rooms.members_of(subscribed_room_id):
                if member_id == user_id:
                    continue
                remote = self.registry.lookup(member_id)
                if remote is None:
                    logger.warning(f"Member {member_id} of {subscribed_room_id} has no live connection, skipping")
                    continue
                remote.send(build_message(SignalAction.REMOVE_PEER, RemovePeerPayload(peerId=user_id)))

            self.rooms.leave(subscribed_room_id, user_id)
            connection.unsubscribe(subscribed_room_id)
            left.append(subscribed_room_id)
            logger.info(f"{user_id} left {subscribed_room_id}")
        return left

    def handle_relay_sdp(self, connection: Connection, payload: RelaySDPPayload):
        self._relay(connection, payload.peerId, build_message(
            SignalAction.SESSION_DESCRIPTION,
            SessionDescriptionPayload(peerId=connection.client_id, sessionDescription=payload.sessionDescription),
        ))

    def handle_relay_ice(self, connection: Connection, payload: RelayICEPayload):
        self._relay(connection, payload.peerId, build_message(
            SignalAction.ICE_CANDIDATE,
            IceCandidatePayload(peerId=connection.client_id, iceCandidate=payload.iceCandidate),
        ))

    def _relay(self, connection: Connection, peer_id: str, message: dict) -> bool:
        remote = self.registry.lookup(peer_id)
        if remote is None:
            logger.debug(f"Dropping {message['action']} from {connection.client_id}: {peer_id} is not connected")
            return False
        return remote.send(message)

    def publish(self, room_id: str, message: dict, sender: Optional[Connection] = None) -> int:
        """Deliver ``message`` to every connection subscribed to ``room_id`` except the sender."""
        delivered = 0
        for member_id in self.rooms.members_of(room_id):
            remote = self.registry.lookup(member_id)
            if remote is None or remote is sender or room_id not in remote.subscriptions:
                continue
            if remote.send(message):
                delivered += 1
        return delivered

    # Introspection

    def room_info(self, room_id: str) -> Optional[RoomInfo]:
        members = self.rooms.members_of(room_id)
        if not members:
            return None
        return RoomInfo(name=room_id, numParticipants=len(members), participants=sorted(members))

    def list_rooms(self) -> List[RoomInfo]:
        rooms = (self.room_info(room_id) for room_id in sorted(self.rooms.room_ids()))
        return [room for room in rooms if room is not None]

    def participant_info(self, client_id: str) -> Optional[ParticipantInfo]:
        connection = self.registry.lookup(client_id)
        if connection is None:
            return None
        return ParticipantInfo(
            identity=client_id,
            connectionId=connection.connection_id,
            rooms=sorted(connection.subscriptions),
            connectedAt=connection.connected_at,
        )

    def list_participants(self) -> List[ParticipantInfo]:
        participants = (self.participant_info(client_id) for client_id in sorted(self.registry.client_ids()))
        return [p for p in participants if p is not None]


async def signaling_endpoint(websocket: WebSocket, userId: Optional[str] = Query(None)):
    """WebSocket entry point. Clients connect with ``?userId=<id>``."""
    relay: SignalingRelay = websocket.app.state.relay
    if not userId or not userId.strip():
        logger.warning("WebSocket connection rejected: missing userId")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="userId query parameter is required")
        return

    connection = relay.connect(userId, websocket)
    pump_task = None
    try:
        await websocket.accept()
        pump_task = asyncio.create_task(connection.pump())
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            data = message.get("text")
            if data is None:
                data = message.get("bytes") or b""
            relay.on_message(connection, data)
    except WebSocketDisconnect as e:
        logger.info(f"WebSocket disconnected for {connection} (code={e.code})")
    except Exception as e:
        logger.error(f"WebSocket error for {connection}: {e}", exc_info=True)
    finally:
        relay.on_disconnect(connection)
        if pump_task is not None:
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass
