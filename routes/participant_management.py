# routes/participant_management.py
from fastapi import APIRouter, HTTPException, Request, status
import logging
from models.schemas import ParticipantInfo

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/room/{room_id}/participants")
async def get_room_participants(room_id: str, request: Request):
    """
    Get the connected participants of a room
    """
    relay = request.app.state.relay
    members = relay.rooms.members_of(room_id)
    if not members:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Room '{room_id}' not found"
        )

    participant_list = []
    for member_id in sorted(members):
        info = relay.participant_info(member_id)
        if info is None:
            # Directory and registry should agree; surface it in logs only
            logger.warning(f"Room {room_id} lists {member_id} without a live connection")
            continue
        participant_list.append(info.model_dump())

    return {
        "roomName": room_id,
        "participants": participant_list,
        "total": len(participant_list)
    }

@router.get("/participants")
async def list_participants(request: Request):
    """
    List every connected client
    """
    participants = request.app.state.relay.list_participants()
    return {
        "participants": [p.model_dump() for p in participants],
        "total": len(participants)
    }

@router.get("/participant/{user_id}", response_model=ParticipantInfo)
async def get_participant(user_id: str, request: Request):
    """
    Get the connection details and rooms of one client
    """
    info = request.app.state.relay.participant_info(user_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Participant '{user_id}' is not connected"
        )
    return info
