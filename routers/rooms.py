from fastapi import APIRouter, HTTPException, Request
from redis.exceptions import RedisError
from typing import List, Optional
from schemas.rooms import (
    CreateRoomRequest,
    RoomSummary,
    RoomDetailsResponse,
    CheckPasswordRequest,
    CheckPasswordResponse,
    DeleteRoomRequest,
    DeleteRoomResponse,
)
from schemas.events import room_deleted_event
from errors import ValidationError, NotFound, Forbidden
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api/rooms", tags=["rooms"])


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@rooms_router.get("", response_model=List[RoomSummary])
async def list_rooms(request: Request):
    try:
        rooms = await request.app.state.rooms.list_rooms()
    except RedisError as e:
        logger.error(f"Error listing rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list rooms")
    return [RoomSummary(id=r.id, name=r.name, description=r.description, created_by=r.created_by) for r in rooms]


@rooms_router.post("", response_model=RoomSummary)
async def create_room(room: CreateRoomRequest, request: Request):
    # { "name": "General", "description": "optional", "password": "optional", "username": "alice" }
    logger.info(f"Room creation request from {_client_host(request)}, name: {room.name}, username: {room.username}")
    try:
        created = await request.app.state.rooms.create_room(room.name, room.description, room.password, room.username)
    except ValidationError as e:
        logger.warning(f"Room creation rejected: {e.detail}")
        raise HTTPException(status_code=400, detail=e.detail)
    except RedisError as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create room")
    return RoomSummary(id=created.id, name=created.name, description=created.description, created_by=created.created_by)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: int, request: Request):
    """Room details plus the number of connections currently joined to it.

    Never includes the password hash, only whether one is set.
    """
    try:
        room = await request.app.state.rooms.get_room(room_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=e.detail)
    except RedisError as e:
        logger.error(f"Error fetching room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch room")
    return RoomDetailsResponse(
        id=room.id,
        name=room.name,
        description=room.description,
        created_by=room.created_by,
        created_at=room.created_at,
        has_password=room.has_password,
        online_count=request.app.state.registry.count(room_id),
    )


@rooms_router.post("/{room_id}/check-password", response_model=CheckPasswordResponse)
async def check_password(room_id: int, body: CheckPasswordRequest, request: Request):
    try:
        valid = await request.app.state.rooms.verify_password(room_id, body.password)
    except NotFound as e:
        logger.warning(f"Password check failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail=e.detail)
    except RedisError as e:
        logger.error(f"Error checking password for room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to check password")
    if not valid:
        logger.warning(f"Invalid password for room {room_id} from {_client_host(request)}")
    return CheckPasswordResponse(valid=valid)


@rooms_router.delete("/{room_id}", response_model=DeleteRoomResponse)
async def delete_room(room_id: int, request: Request, body: Optional[DeleteRoomRequest] = None):
    # Body: { "password": "if-set" }
    # - Room hash, its message index and every message are removed in one transaction.
    # - Connections still joined get a room_deleted event.
    logger.info(f"Delete room request for {room_id} from {_client_host(request)}")
    try:
        await request.app.state.rooms.delete_room(room_id, body.password if body else None)
    except NotFound as e:
        logger.warning(f"Delete room failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail=e.detail)
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.detail)
    except RedisError as e:
        logger.error(f"Error deleting room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete room")

    await request.app.state.broadcaster.broadcast(room_id, room_deleted_event(room_id))
    return DeleteRoomResponse(success=True)
