from fastapi import APIRouter, HTTPException, Request

from constants import ROOM_NOT_FOUND_MESSAGE
from logging_config import get_logger
from routers.messages import MessageRouter
from schemas.rooms import RoomDetailsResponse, RoomMember, RoomSummary

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_message_router(request: Request) -> MessageRouter:
    return request.app.state.message_router


@rooms_router.get("/", response_model=list[RoomSummary])
async def list_rooms(request: Request):
    message_router = get_message_router(request)
    rooms = message_router.directory.rooms()
    logger.debug(f"Listing {len(rooms)} active rooms")
    return [RoomSummary(room_id=room.room_id, member_count=len(room.members)) for room in rooms]


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get a room's current membership.

    Returns:
    - room_id: Room identifier
    - member_count: Number of sessions in the room
    - members: session id and display name of each member
    """
    message_router = get_message_router(request)
    if not message_router.directory.exists(room_id):
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail=ROOM_NOT_FOUND_MESSAGE)

    members = []
    for session_id in sorted(message_router.directory.members_of(room_id)):
        session = message_router.registry.get(session_id)
        if session is not None:
            members.append(RoomMember(session_id=session_id, display_name=session.display_name))

    logger.debug(f"Room details retrieved for {room_id}: {len(members)} members")
    return RoomDetailsResponse(room_id=room_id, member_count=len(members), members=members)
