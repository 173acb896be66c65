import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.schemas import ProfileCreate, ProfilePublic, ProfileUpdate
from portal.services import profile_service
from portal.services.auth_service import get_caller, get_identity
from portal.services.policy import Caller

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.post("", response_model=ProfilePublic, status_code=status.HTTP_201_CREATED)
async def create_my_profile(
    profile_in: ProfileCreate,
    identity: uuid.UUID = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """
    Called once after signup with the identity provider.
    The row id is the token subject.
    """
    return await profile_service.create_own_profile(db, identity, profile_in)


@router.get("", response_model=List[ProfilePublic])
async def list_profiles(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await profile_service.list_profiles(db, caller)


@router.get("/counselors", response_model=List[ProfilePublic])
async def list_counselors(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Active counselors a student can start a chat or book with."""
    return await profile_service.list_counselors(db, caller)


@router.get("/me", response_model=ProfilePublic)
async def get_my_profile(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await profile_service.get_profile(db, caller, caller.id)


@router.get("/{profile_id}", response_model=ProfilePublic)
async def get_profile(
    profile_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await profile_service.get_profile(db, caller, profile_id)


@router.put("/{profile_id}", response_model=ProfilePublic)
async def update_profile(
    profile_id: uuid.UUID,
    profile_in: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await profile_service.update_profile(db, caller, profile_id, profile_in)
