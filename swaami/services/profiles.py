"""Profile registration, updates, anonymizing deletion and counters."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.auth import hash_key, key_fingerprint
from swaami.config import settings
from swaami.db_models import Availability, Profile, Task, TaskStatus, TrustTier
from swaami.errors import NotFoundError, TransientStoreError, ValidationError
from swaami.events import TASKS, Event, event_bus
from swaami.ids import api_key, profile_id, user_ref
from swaami.onboarding import helper_level, onboarding_status
from swaami.retry import bounded
from swaami.services.credits import record_credit
from swaami.state_machine import task_transition
from swaami.utils import as_utc, iso, safe_json_loads

logger = logging.getLogger("swaami.profiles")

DELETED_DISPLAY_NAME = "[Deleted User]"


def profile_to_dict(profile: Profile, private: bool = True) -> dict:
    level = helper_level(profile.tasks_completed)
    data = {
        "id": profile.id,
        "display_name": profile.display_name,
        "neighbourhood": profile.neighbourhood,
        "skills": safe_json_loads(profile.skills) or [],
        "availability": profile.availability,
        "tasks_completed": profile.tasks_completed,
        "reliability_score": profile.reliability_score,
        "trust_tier": profile.trust_tier,
        "level": level.level,
    }
    if private:
        data.update(
            {
                "phone": profile.phone,
                "city": profile.city,
                "location_lat": profile.location_lat,
                "location_lng": profile.location_lng,
                "radius": profile.radius,
                "credits": profile.credits,
                "is_demo": profile.is_demo,
                "onboarded": onboarding_status(profile).is_onboarded,
                "level_progress": {
                    "current": level.progress,
                    "required": level.required,
                    "percentage": level.percentage,
                },
                "created_at": iso(profile.created_at),
            }
        )
    return data


async def ensure_profile(
    session: AsyncSession,
    ref: str,
    display_name: str | None = None,
    initial_credits: int = 0,
) -> tuple[Profile, bool]:
    """Race-safe upsert keyed on the identity reference.

    A concurrent signup (or a row created elsewhere first) wins silently; the
    caller gets the existing profile and ``created=False``.
    """
    now = datetime.now(UTC)
    result = await session.execute(
        sqlite_insert(Profile)
        .values(
            id=profile_id(),
            user_ref=ref,
            display_name=display_name,
            radius=settings.default_radius_m,
            availability=Availability.now.value,
            credits=initial_credits,
            tasks_completed=0,
            reliability_score=5.0,
            trust_tier=TrustTier.tier_0.value,
            is_demo=False,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_ref"])
    )
    created = result.rowcount == 1
    profile = (
        await session.execute(select(Profile).where(Profile.user_ref == ref))
    ).scalar_one()
    return profile, created


async def register(session: AsyncSession, display_name: str) -> dict:
    """Create an identity and its profile. Returns the raw API key once."""
    key = api_key()

    async def write() -> Profile:
        profile, created = await ensure_profile(
            session, user_ref(), display_name, initial_credits=settings.initial_credits
        )
        profile.key_hash = hash_key(key)
        profile.key_fingerprint = key_fingerprint(key)
        session.add(profile)
        if created and settings.initial_credits:
            await record_credit(session, profile.id, settings.initial_credits, "signup_bonus")
        await session.commit()
        return profile

    profile = await bounded(write, session=session)
    logger.info("Registered profile %s", profile.id)

    return {
        "profile_id": profile.id,
        "api_key": key,
        "credits": profile.credits,
        "trust_tier": profile.trust_tier,
    }


async def get_profile(session: AsyncSession, pid: str) -> Profile:
    profile = await session.get(Profile, pid)
    if not profile:
        raise NotFoundError("profile", pid)
    return profile


def _next_stamp(seen: datetime | None) -> datetime:
    now = datetime.now(UTC)
    if seen is not None and as_utc(seen) >= now:
        return as_utc(seen) + timedelta(microseconds=1)
    return now


async def update_profile(session: AsyncSession, profile: Profile, changes: dict) -> Profile:
    """Apply owner edits. ``changes`` is already validated by the request model."""

    async def write() -> None:
        for name, value in changes.items():
            if name == "skills":
                value = json.dumps(value)
            elif hasattr(value, "value"):
                value = value.value
            setattr(profile, name, value)
        profile.updated_at = _next_stamp(profile.updated_at)
        session.add(profile)
        await session.commit()

    await bounded(write, session=session)
    await session.refresh(profile)
    return profile


async def _read_counters(session: AsyncSession, pid: str):
    result = await session.execute(
        select(Profile.credits, Profile.tasks_completed, Profile.updated_at).where(
            Profile.id == pid
        )
    )
    return result.one_or_none()


async def adjust_counters(
    session: AsyncSession,
    pid: str,
    *,
    credits: int = 0,
    tasks_completed: int = 0,
    reason: str | None = None,
    task_id: str | None = None,
) -> None:
    """Optimistic compare-and-swap on ``updated_at``.

    Reads the counters, computes the new values and writes only if nobody
    touched the row in between; on conflict starts over from a fresh read.
    Does not commit.
    """
    for attempt in range(1, settings.cas_max_attempts + 1):
        row = await _read_counters(session, pid)
        if row is None:
            raise NotFoundError("profile", pid)
        new_credits = row.credits + credits
        if new_credits < 0:
            raise ValidationError(f"Insufficient credits: have {row.credits}, need {-credits}")

        result = await session.execute(
            update(Profile)
            .where(Profile.id == pid, Profile.updated_at == row.updated_at)
            .values(
                credits=new_credits,
                tasks_completed=row.tasks_completed + tasks_completed,
                updated_at=_next_stamp(row.updated_at),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            if credits:
                await record_credit(session, pid, credits, reason or "adjustment", task_id)
            return
        logger.info("Profile %s changed concurrently, retrying counters (attempt %d)", pid, attempt)

    raise TransientStoreError(f"profile {pid} counters contended after {attempt} attempts")


async def anonymize_profile(session: AsyncSession, profile: Profile) -> dict:
    """Delete an account without breaking history: clear PII, revoke the key.

    Verification events stay (they are immutable facts); the user's still-open
    requests are cancelled.
    """
    pid = profile.id
    now = datetime.now(UTC)

    async def write() -> list[str]:
        profile.display_name = DELETED_DISPLAY_NAME
        profile.phone = None
        profile.city = None
        profile.neighbourhood = None
        profile.location_lat = None
        profile.location_lng = None
        profile.skills = json.dumps([])
        profile.availability = Availability.later.value
        profile.key_hash = None
        profile.key_fingerprint = None
        profile.deleted_at = now
        profile.updated_at = _next_stamp(profile.updated_at)
        session.add(profile)

        cancelled = task_transition(TaskStatus.open, TaskStatus.cancelled)
        result = await session.execute(
            select(Task.id).where(Task.owner_id == pid, Task.status == TaskStatus.open.value)
        )
        open_ids = [row[0] for row in result.fetchall()]
        if open_ids:
            await session.execute(
                update(Task)
                .where(Task.id.in_(open_ids), Task.status == TaskStatus.open.value)
                .values(status=cancelled, cancelled_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        await session.commit()
        return open_ids

    open_ids = await bounded(write, session=session)
    logger.info("Anonymized profile %s, cancelled %d open tasks", pid, len(open_ids))

    for tid in open_ids:
        event_bus.publish(TASKS, Event(type="task_cancelled", entity_id=tid))
    return {"profile_id": pid, "deleted": True, "cancelled_tasks": open_ids}
