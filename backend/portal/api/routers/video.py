from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.models import VideoSession
from portal.schemas import VideoRoom, VideoRoomCreate, VideoSessionPublic
from portal.services import video_service
from portal.services.auth_service import get_caller
from portal.services.policy import Caller

router = APIRouter(prefix="/video", tags=["video"])


def to_response(session: VideoSession) -> VideoSessionPublic:
    resp = VideoSessionPublic.model_validate(session)
    resp.meeting_url = video_service.meeting_url(session.room_id)
    return resp


@router.post("/rooms", response_model=VideoSessionPublic, status_code=status.HTTP_201_CREATED)
async def create_room(
    req: VideoRoomCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """
    Record a room on the conferencing service. The client opens meeting_url itself.
    A room_id that already exists is rejected with 409.
    """
    return to_response(await video_service.create_room(db, caller, req))


@router.post("/quick", response_model=VideoRoom)
async def quick_room(caller: Caller = Depends(get_caller)):
    """Unrecorded room, e.g. an ad-hoc call started from the chat view."""
    return video_service.quick_room()


@router.get("/rooms", response_model=List[VideoSessionPublic])
async def list_rooms(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return [to_response(s) for s in await video_service.list_sessions(db, caller)]


@router.get("/rooms/{room_id}", response_model=VideoSessionPublic)
async def get_room(
    room_id: str,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return to_response(await video_service.get_session(db, caller, room_id))


@router.post("/rooms/{room_id}/end", response_model=VideoSessionPublic)
async def end_call(
    room_id: str,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return to_response(await video_service.end_call(db, caller, room_id))
