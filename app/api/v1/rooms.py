"""
Room listing API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.config import settings
from app.core.dependencies import get_orchestrator
from app.core.rate_limit import limiter
from app.schemas.multiplayer import ActiveRoomsResponse, RoomInfo
from app.services.orchestrator import GameOrchestrator

router = APIRouter()


@router.get("/rooms/active", response_model=ActiveRoomsResponse)
@limiter.limit(settings.RATE_LIMIT)
async def get_active_rooms(
    request: Request,
    orchestrator: GameOrchestrator = Depends(get_orchestrator)
):
    """Waiting rooms that still have a free slot"""
    rooms = orchestrator.rooms.list_joinable()
    return ActiveRoomsResponse(rooms=rooms, total_rooms=len(rooms))


@router.get("/room/{room_id}/info", response_model=RoomInfo)
@limiter.limit(settings.RATE_LIMIT)
async def get_room_info(
    request: Request,
    room_id: str,
    orchestrator: GameOrchestrator = Depends(get_orchestrator)
):
    """Public information about one room"""
    info = orchestrator.rooms.get_info(room_id)
    if not info:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Room not found"
        )
    return info
