from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal import config
from portal.errors import Conflict, NotFound
from portal.models import Appointment, VideoSession
from portal.schemas import VideoRoomCreate
from portal.services.policy import Caller, Operation, ensure, readable_clause
from portal.utils.logger import get_logger
from portal.utils.timeutil import as_utc, epoch_millis, utcnow

log = get_logger("video")


def make_room_id(context: str, now: Optional[datetime] = None) -> str:
    """``<namespace>-<context>-<timestamp>``, timestamp in epoch milliseconds."""
    return f"{config.ROOM_NAMESPACE}-{context}-{epoch_millis(now or utcnow())}"


def meeting_url(room_id: str) -> str:
    return f"{config.VIDEO_PROVIDER_URL}/{room_id}"


def quick_room(context: str = "quick") -> dict:
    # Not recorded; just a room on the provider
    room_id = make_room_id(context)
    return {"room_id": room_id, "meeting_url": meeting_url(room_id)}


async def _linked_appointment(db: AsyncSession, session: VideoSession) -> Optional[Appointment]:
    if session.appointment_id is None:
        return None
    return await db.get(Appointment, session.appointment_id)


async def create_room(db: AsyncSession, caller: Caller, data: VideoRoomCreate) -> VideoSession:
    appointment = None
    participants = [str(caller.id)]
    if data.appointment_id is not None:
        appointment = await db.get(Appointment, data.appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found")
        participants = [str(appointment.student_id), str(appointment.counselor_id)]

    session = VideoSession(
        appointment_id=data.appointment_id,
        room_id=data.room_id or make_room_id(data.context),
        participants=participants,
        call_started_at=utcnow(),
    )
    ensure(caller, Operation.INSERT, session, parent=appointment)

    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning("duplicate video room id rejected: %s", session.room_id)
        raise Conflict("Room already exists")
    await db.refresh(session)
    log.info("video room %s created by %s (appointment=%s)", session.room_id, caller.id, data.appointment_id)
    return session


async def get_session(db: AsyncSession, caller: Caller, room_id: str) -> VideoSession:
    session = (
        await db.execute(select(VideoSession).where(VideoSession.room_id == room_id))
    ).scalar_one_or_none()
    if session is None:
        raise NotFound("Room not found")
    ensure(caller, Operation.READ, session, parent=await _linked_appointment(db, session))
    return session


async def list_sessions(db: AsyncSession, caller: Caller) -> List[VideoSession]:
    """
    Sessions linked to the caller's appointments plus ad-hoc rooms the caller
    took part in, newest first.
    """
    q = (
        select(VideoSession)
        .where(readable_clause(caller, VideoSession))
        .order_by(VideoSession.created_at.desc())
    )
    return list((await db.execute(q)).scalars().all())


async def end_call(db: AsyncSession, caller: Caller, room_id: str) -> VideoSession:
    session = await get_session(db, caller, room_id)
    ensure(caller, Operation.UPDATE, session, parent=await _linked_appointment(db, session))
    if session.call_ended_at is not None:
        raise Conflict("Call already ended")

    ended = utcnow()
    session.call_ended_at = ended
    if session.call_started_at is not None:
        session.call_duration = max(int((ended - as_utc(session.call_started_at)).total_seconds()), 0)
    await db.commit()
    await db.refresh(session)
    log.info("video room %s ended after %ss", room_id, session.call_duration)
    return session
