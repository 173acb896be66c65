from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.schemas import AppointmentPublic, Overview
from portal.services import appointment_service, chat_service
from portal.services.auth_service import get_caller
from portal.services.policy import Caller

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/overview", response_model=Overview)
async def get_overview(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Counts for the landing page of either role."""
    nxt = await appointment_service.next_appointment(db, caller)
    return Overview(
        role=caller.role,
        active_conversations=await chat_service.count_active_conversations(db, caller),
        upcoming_appointments=await appointment_service.count_upcoming(db, caller),
        next_appointment=_public(nxt) if nxt else None,
    )


def _public(appointment) -> AppointmentPublic:
    resp = AppointmentPublic.model_validate(appointment)
    resp.can_join = appointment_service.can_join_call(appointment)
    return resp
