"""Authentication: bcrypt-hashed API keys with fingerprint-based lookup."""

from __future__ import annotations

import hashlib
import secrets

import bcrypt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.database import get_db_session
from swaami.db_models import Profile


def hash_key(key: str) -> str:
    return bcrypt.hashpw(key.encode(), bcrypt.gensalt()).decode()


def verify_key(key: str, key_hash: str) -> bool:
    return bcrypt.checkpw(key.encode(), key_hash.encode())


def key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _bearer(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    return auth[7:]


async def get_current_profile(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Profile:
    raw_key = _bearer(request)
    fp = key_fingerprint(raw_key)

    result = await session.execute(select(Profile).where(Profile.key_fingerprint == fp))
    profile = result.scalar_one_or_none()

    if not profile or not profile.key_hash or not verify_key(raw_key, profile.key_hash):
        raise HTTPException(status_code=401, detail="Invalid API key")

    if profile.deleted_at is not None:
        raise HTTPException(status_code=401, detail="Account deleted")

    return profile


AuthProfile = Depends(get_current_profile)


async def verify_service_key(request: Request) -> None:
    """Guard for endpoints called by verification sub-services."""
    from swaami.config import settings

    if settings.service_key is None:
        raise HTTPException(status_code=501, detail="Service API not configured")
    if not secrets.compare_digest(_bearer(request), settings.service_key):
        raise HTTPException(status_code=403, detail="Invalid service key")
