from fastapi import APIRouter, HTTPException, Request, status
import logging
from models.schemas import RoomInfo

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/rooms")
async def list_rooms(request: Request):
    """
    List all rooms that currently have members
    """
    rooms = request.app.state.relay.list_rooms()
    return {
        "rooms": [room.model_dump() for room in rooms],
        "total": len(rooms)
    }

@router.get("/room/{room_id}", response_model=RoomInfo)
async def get_room_info(room_id: str, request: Request):
    """
    Get the member list of a specific room
    """
    room = request.app.state.relay.room_info(room_id)
    if room is None:
        logger.debug(f"Room lookup for {room_id}: no members")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Room '{room_id}' not found"
        )
    return room
