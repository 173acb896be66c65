from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal import config
from portal.errors import Conflict, NotFound, ValidationFailed
from portal.models import Appointment, Conversation
from portal.schemas import AppointmentCreate, AppointmentUpdate
from portal.services import profile_service
from portal.services.policy import Caller, Operation, ensure, readable_clause
from portal.services.video_service import make_room_id, meeting_url
from portal.utils.logger import get_logger
from portal.utils.timeutil import as_utc, utcnow

log = get_logger("appointments")

TERMINAL = frozenset({"completed", "cancelled"})
TRANSITIONS = {
    "scheduled": {"confirmed", "in_progress", "cancelled"},
    "confirmed": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def can_join_call(appointment: Appointment, now: Optional[datetime] = None) -> bool:
    """
    Whether the call-join affordance is active at ``now``.
    Pure: depends only on the clock and the appointment, so callers
    recompute it on every read instead of storing it.
    """
    now = as_utc(now or utcnow())
    start = as_utc(appointment.scheduled_start)
    end = as_utc(appointment.scheduled_end)
    join_from = start - timedelta(minutes=config.JOIN_WINDOW_MINUTES)
    return (
        join_from <= now <= end
        and appointment.status != "cancelled"
        and appointment.appointment_type == "video"
    )


def _check_window(start: datetime, end: datetime) -> None:
    if not as_utc(start) < as_utc(end):
        raise ValidationFailed("scheduled_start must be before scheduled_end")


async def create_appointment(db: AsyncSession, caller: Caller, data: AppointmentCreate) -> Appointment:
    _check_window(data.scheduled_start, data.scheduled_end)

    appointment = Appointment(
        student_id=caller.id,
        counselor_id=data.counselor_id,
        conversation_id=data.conversation_id,
        appointment_type=data.appointment_type,
        status="scheduled",
        scheduled_start=as_utc(data.scheduled_start),
        scheduled_end=as_utc(data.scheduled_end),
        reason_for_visit=data.reason_for_visit,
        notes=data.notes,
        is_emergency=data.is_emergency,
    )
    ensure(caller, Operation.INSERT, appointment)
    await profile_service.require_counselor(db, data.counselor_id)

    if data.conversation_id is not None:
        conversation = await db.get(Conversation, data.conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        ensure(caller, Operation.READ, conversation)
        if conversation.counselor_id != data.counselor_id:
            raise ValidationFailed("Conversation belongs to a different counselor")

    if data.appointment_type == "video":
        appointment.meeting_url = meeting_url(make_room_id("appointment"))

    db.add(appointment)
    await db.commit()
    log.info(
        "appointment %s booked: student=%s counselor=%s type=%s",
        appointment.id, caller.id, data.counselor_id, data.appointment_type,
    )
    return await get_appointment(db, caller, appointment.id)


async def get_appointment(db: AsyncSession, caller: Caller, appointment_id: int) -> Appointment:
    q = (
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .options(selectinload(Appointment.student), selectinload(Appointment.counselor))
        .execution_options(populate_existing=True)
    )
    appointment = (await db.execute(q)).scalar_one_or_none()
    if appointment is None:
        raise NotFound("Appointment not found")
    ensure(caller, Operation.READ, appointment)
    return appointment


async def list_appointments(db: AsyncSession, caller: Caller) -> List[Appointment]:
    q = (
        select(Appointment)
        .where(readable_clause(caller, Appointment))
        .options(selectinload(Appointment.student), selectinload(Appointment.counselor))
        .order_by(Appointment.scheduled_start.asc())
    )
    return list((await db.execute(q)).scalars().all())


async def update_appointment(
    db: AsyncSession, caller: Caller, appointment_id: int, data: AppointmentUpdate
) -> Appointment:
    appointment = await get_appointment(db, caller, appointment_id)
    ensure(caller, Operation.UPDATE, appointment)
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return appointment

    if appointment.status in TERMINAL:
        raise Conflict(f"Appointment is already {appointment.status}")

    new_status = changes.get("status")
    reschedule = "scheduled_start" in changes or "scheduled_end" in changes
    if reschedule and new_status in TERMINAL:
        raise Conflict(f"Cannot reschedule an appointment that is being {new_status}")

    if new_status is not None and new_status != appointment.status:
        if new_status not in TRANSITIONS[appointment.status]:
            raise Conflict(f"Cannot move appointment from {appointment.status} to {new_status}")
        appointment.status = new_status

    if reschedule:
        start = changes.get("scheduled_start") or appointment.scheduled_start
        end = changes.get("scheduled_end") or appointment.scheduled_end
        _check_window(start, end)
        appointment.scheduled_start = as_utc(start)
        appointment.scheduled_end = as_utc(end)

    if "notes" in changes:
        appointment.notes = changes["notes"]

    await db.commit()
    log.info("appointment %s updated by %s: %s", appointment_id, caller.id, sorted(changes))
    return await get_appointment(db, caller, appointment_id)


async def join_call(db: AsyncSession, caller: Caller, appointment_id: int, now: Optional[datetime] = None) -> str:
    appointment = await get_appointment(db, caller, appointment_id)
    if not can_join_call(appointment, now) or not appointment.meeting_url:
        raise Conflict("Call is not joinable right now")
    return appointment.meeting_url


async def count_upcoming(db: AsyncSession, caller: Caller) -> int:
    q = select(func.count(Appointment.id)).where(
        readable_clause(caller, Appointment),
        Appointment.status.not_in(TERMINAL),
        Appointment.scheduled_end >= utcnow(),
    )
    return (await db.execute(q)).scalar() or 0


async def next_appointment(db: AsyncSession, caller: Caller) -> Optional[Appointment]:
    q = (
        select(Appointment)
        .where(
            readable_clause(caller, Appointment),
            Appointment.status.not_in(TERMINAL),
            Appointment.scheduled_end >= utcnow(),
        )
        .order_by(Appointment.scheduled_start.asc())
        .limit(1)
    )
    return (await db.execute(q)).scalar_one_or_none()
