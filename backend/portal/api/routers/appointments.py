from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.models import Appointment
from portal.schemas import (
    AppointmentCreate, AppointmentUpdate, AppointmentWithParticipants, JoinInfo,
)
from portal.services import appointment_service
from portal.services.auth_service import get_caller
from portal.services.policy import Caller

router = APIRouter(prefix="/appointments", tags=["appointments"])


def to_response(appointment: Appointment) -> AppointmentWithParticipants:
    # can_join depends on the clock, so it is computed per response
    resp = AppointmentWithParticipants.model_validate(appointment)
    resp.can_join = appointment_service.can_join_call(appointment)
    return resp


@router.get("", response_model=List[AppointmentWithParticipants])
async def list_appointments(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    appointments = await appointment_service.list_appointments(db, caller)
    return [to_response(a) for a in appointments]


@router.post("", response_model=AppointmentWithParticipants, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    req: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    appointment = await appointment_service.create_appointment(db, caller, req)
    return to_response(appointment)


@router.get("/{appointment_id}", response_model=AppointmentWithParticipants)
async def get_appointment(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return to_response(await appointment_service.get_appointment(db, caller, appointment_id))


@router.patch("/{appointment_id}", response_model=AppointmentWithParticipants)
async def update_appointment(
    appointment_id: int,
    req: AppointmentUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Status change (confirm, start, complete, cancel) or reschedule."""
    appointment = await appointment_service.update_appointment(db, caller, appointment_id, req)
    return to_response(appointment)


@router.get("/{appointment_id}/join", response_model=JoinInfo)
async def join_appointment_call(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    url = await appointment_service.join_call(db, caller, appointment_id)
    return JoinInfo(appointment_id=appointment_id, meeting_url=url)
