import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from portal import config
from portal.db import get_db, bind_caller
from portal.models import Profile
from portal.services.policy import Caller

# Tokens come from the external identity provider; tokenUrl is informational only.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a token the way the identity provider does. Used by tests and local tooling.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def verify_access_token(token: str) -> dict:
    """Decode and validate a bearer token. Raises JWTError on any problem."""
    payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    if payload.get("sub") is None:
        raise JWTError("token has no subject")
    return payload


def identity_from_token(token: str) -> uuid.UUID:
    payload = verify_access_token(token)
    try:
        return uuid.UUID(str(payload["sub"]))
    except ValueError as e:
        raise JWTError("subject is not a profile id") from e


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_identity(token: str = Depends(oauth2_scheme)) -> uuid.UUID:
    """
    Verified identity only. Used where a profile row may not exist yet
    (inserting one's own profile after signup).
    """
    try:
        return identity_from_token(token)
    except JWTError:
        raise credentials_exception()


async def get_current_profile(
    identity: uuid.UUID = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    profile = await db.get(Profile, identity)
    if profile is None or not profile.is_active:
        raise credentials_exception()
    return profile


async def get_caller(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """
    The explicit caller context handed to every service call.
    """
    await bind_caller(db, profile.id)
    return Caller(id=profile.id, role=profile.role)


async def resolve_caller(db: AsyncSession, token: str) -> Caller | None:
    """Same as get_caller for transports without dependency injection (WebSocket)."""
    try:
        identity = identity_from_token(token)
    except JWTError:
        return None
    profile = await db.get(Profile, identity)
    if profile is None or not profile.is_active:
        return None
    await bind_caller(db, profile.id)
    return Caller(id=profile.id, role=profile.role)
