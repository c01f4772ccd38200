"""VerificationLedger: append-only verification facts and the cached trust tier."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.db_models import Profile, TrustTier, VerificationEvent, VerificationType
from swaami.errors import NotFoundError
from swaami.gate import Action, Decision, allowed_actions, authorize, require
from swaami.ids import verification_id
from swaami.retry import bounded
from swaami.trust import missing_for_tier, tier_at_least, tier_of

logger = logging.getLogger("swaami.verifications")


async def list_events(session: AsyncSession, profile_id: str) -> list[VerificationEvent]:
    result = await session.execute(
        select(VerificationEvent)
        .where(VerificationEvent.profile_id == profile_id)
        .order_by(VerificationEvent.verified_at)
    )
    return list(result.scalars().all())


async def recompute_trust_tier(session: AsyncSession, profile_id: str) -> TrustTier:
    """Derive the tier from events and refresh the cached copy. Does not commit."""
    tier = tier_of(await list_events(session, profile_id))
    await session.execute(
        update(Profile)
        .where(Profile.id == profile_id, Profile.trust_tier != tier.value)
        .values(trust_tier=tier.value)
        .execution_options(synchronize_session=False)
    )
    return tier


async def record_verification(
    session: AsyncSession,
    profile_id: str,
    verification_type: VerificationType | str,
    details: dict | None = None,
) -> dict:
    """Record that ``profile_id`` passed a verification.

    Idempotent per (profile, type): recording the same fact twice keeps the
    first event and reports ``recorded=False``.
    """
    vtype = VerificationType(verification_type)
    if await session.get(Profile, profile_id) is None:
        raise NotFoundError("profile", profile_id)

    async def write() -> tuple[bool, TrustTier]:
        result = await session.execute(
            sqlite_insert(VerificationEvent)
            .values(
                id=verification_id(),
                profile_id=profile_id,
                verification_type=vtype.value,
                details=json.dumps(details) if details else None,
                verified_at=datetime.now(UTC),
            )
            .on_conflict_do_nothing(index_elements=["profile_id", "verification_type"])
        )
        recorded = result.rowcount == 1
        tier = await recompute_trust_tier(session, profile_id)
        await session.commit()
        return recorded, tier

    recorded, tier = await bounded(write, session=session)

    if recorded:
        logger.info("Recorded %s for %s, tier now %s", vtype.value, profile_id, tier.value)
    return {
        "profile_id": profile_id,
        "verification_type": vtype.value,
        "recorded": recorded,
        "trust_tier": tier.value,
    }


async def trust_status(session: AsyncSession, profile: Profile) -> dict:
    events = await list_events(session, profile.id)
    tier = tier_of(events)
    return {
        "trust_tier": tier.value,
        "verifications": [e.verification_type for e in events],
        "missing_for_tier_1": [t.value for t in missing_for_tier(events, TrustTier.tier_1)],
        "missing_for_tier_2": [t.value for t in missing_for_tier(events, TrustTier.tier_2)],
        "allowed_actions": [a.value for a in allowed_actions(tier)],
    }


async def ensure_allowed(session: AsyncSession, profile: Profile, action: Action) -> Decision:
    """Gate ``action`` on the profile's cached tier.

    A denial is double-checked against the events themselves: if the cache
    lags behind, it is repaired and the action goes through.
    """
    decision = authorize(action, profile.trust_tier)
    if decision.allowed:
        return decision

    events = await list_events(session, profile.id)
    actual = tier_of(events)
    if tier_at_least(actual, decision.required_tier):
        logger.warning(
            "Cached tier %s for %s is stale (actual %s), repairing",
            profile.trust_tier,
            profile.id,
            actual.value,
        )
        pid = profile.id

        async def repair() -> None:
            await recompute_trust_tier(session, pid)
            await session.commit()

        await bounded(repair, session=session)
        await session.refresh(profile)
        return authorize(action, actual)

    return require(action, actual, events)
