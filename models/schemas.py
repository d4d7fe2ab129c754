# models/schemas.py
from enum import Enum
from pydantic import BaseModel
from typing import Any, Optional, List


class SignalAction(str, Enum):
    JOIN = "join"
    ADD_PEER = "add-peer"
    LEAVE = "leave"
    RELAY_SDP = "relay-sdp"
    RELAY_ICE = "relay-ice"
    SESSION_DESCRIPTION = "session-description"
    ICE_CANDIDATE = "ice-candidate"
    REMOVE_PEER = "remove-peer"


# Envelope shared by both directions
class SignalEnvelope(BaseModel):
    action: str
    payload: Optional[dict] = None


# Client -> server payloads
class JoinPayload(BaseModel):
    roomId: str

class LeavePayload(BaseModel):
    roomId: Optional[str] = None

class RelaySDPPayload(BaseModel):
    peerId: str
    sessionDescription: Any = None

class RelayICEPayload(BaseModel):
    peerId: str
    iceCandidate: Any = None


# Server -> client payloads
class AddPeerPayload(BaseModel):
    peerId: str
    createOffer: bool

class SessionDescriptionPayload(BaseModel):
    peerId: str
    sessionDescription: Any = None

class IceCandidatePayload(BaseModel):
    peerId: str
    iceCandidate: Any = None

class RemovePeerPayload(BaseModel):
    peerId: str


# Room broadcast announcement
class RoomAnnouncement(BaseModel):
    user: str = "server"
    message: str


# Introspection responses
class RoomInfo(BaseModel):
    name: str
    numParticipants: int
    participants: List[str]

class ParticipantInfo(BaseModel):
    identity: str
    connectionId: str
    rooms: List[str]
    connectedAt: str
