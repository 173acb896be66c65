import asyncio
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from portal.models import Profile

# Fixed ids so local tokens can be minted by hand
DEMO_PROFILES = {
    "student": dict(
        id=uuid.UUID("7b6d0a52-3f1e-4c55-9d2a-5a1f0c7e1001"),
        email="student1@campus.edu", first_name="Mina", last_name="Park", role="student",
    ),
    "other_student": dict(
        id=uuid.UUID("7b6d0a52-3f1e-4c55-9d2a-5a1f0c7e1002"),
        email="student2@campus.edu", first_name="Joon", last_name="Lee", role="student",
    ),
    "counselor": dict(
        id=uuid.UUID("7b6d0a52-3f1e-4c55-9d2a-5a1f0c7e2001"),
        email="counselor1@campus.edu", first_name="Hana", last_name="Choi", role="counselor",
    ),
    "other_counselor": dict(
        id=uuid.UUID("7b6d0a52-3f1e-4c55-9d2a-5a1f0c7e2002"),
        email="counselor2@campus.edu", first_name="Seo", last_name="Yoon", role="counselor",
    ),
}


async def seed_profiles(session: AsyncSession) -> dict[str, uuid.UUID]:
    session.add_all(Profile(**fields) for fields in DEMO_PROFILES.values())
    await session.commit()
    return {key: fields["id"] for key, fields in DEMO_PROFILES.items()}


async def main():
    from portal.db import SessionLocal, create_all

    await create_all()
    async with SessionLocal() as session:
        ids = await seed_profiles(session)
    for key, profile_id in ids.items():
        print(f"{key}: {profile_id}")


if __name__ == "__main__":
    asyncio.run(main())
