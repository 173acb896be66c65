import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import bind_caller
from portal.errors import Conflict, NotFound, ValidationFailed
from portal.models import Profile
from portal.schemas import ProfileCreate, ProfileUpdate
from portal.services.policy import Caller, Operation, ensure, readable_clause
from portal.utils.logger import get_logger

log = get_logger("profiles")


async def create_own_profile(db: AsyncSession, identity: uuid.UUID, data: ProfileCreate) -> Profile:
    """
    Insert the profile row for a freshly signed-up identity.
    Only the identity itself may insert its row.
    """
    await bind_caller(db, identity)
    profile = Profile(id=identity, **data.model_dump())
    ensure(Caller(id=identity, role=data.role), Operation.INSERT, profile)

    if await db.get(Profile, identity) is not None:
        raise Conflict("Profile already exists")

    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already registered")
    await db.refresh(profile)
    log.info("profile created: id=%s role=%s", profile.id, profile.role)
    return profile


async def get_profile(db: AsyncSession, caller: Caller, profile_id: uuid.UUID) -> Profile:
    profile = await db.get(Profile, profile_id)
    if profile is None:
        raise NotFound("Profile not found")
    ensure(caller, Operation.READ, profile)
    return profile


async def list_profiles(db: AsyncSession, caller: Caller, role: str | None = None) -> List[Profile]:
    q = select(Profile).where(readable_clause(caller, Profile)).order_by(Profile.last_name, Profile.first_name)
    if role:
        q = q.where(Profile.role == role, Profile.is_active.is_(True))
    return list((await db.execute(q)).scalars().all())


async def list_counselors(db: AsyncSession, caller: Caller) -> List[Profile]:
    return await list_profiles(db, caller, role="counselor")


async def update_profile(
    db: AsyncSession, caller: Caller, profile_id: uuid.UUID, data: ProfileUpdate
) -> Profile:
    profile = await get_profile(db, caller, profile_id)
    ensure(caller, Operation.UPDATE, profile)

    update_data = data.model_dump(exclude_unset=True)
    if not update_data:
        return profile
    for key, value in update_data.items():
        setattr(profile, key, value)
    await db.commit()
    await db.refresh(profile)
    return profile


async def require_counselor(db: AsyncSession, counselor_id: uuid.UUID) -> Profile:
    counselor = await db.get(Profile, counselor_id)
    if counselor is None or counselor.role != "counselor" or not counselor.is_active:
        raise ValidationFailed("counselor_id does not reference an active counselor")
    return counselor
