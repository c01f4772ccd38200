"""Endorsements: a verified neighbour vouches for someone via a one-time link."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.config import settings
from swaami.db_models import Endorsement, EndorsementStatus, Profile, VerificationType
from swaami.errors import ForbiddenError, NotFoundError, StateConflictError
from swaami.gate import Action
from swaami.ids import endorsement_id, endorsement_token
from swaami.retry import bounded
from swaami.services.verifications import ensure_allowed, record_verification
from swaami.utils import as_utc, iso

logger = logging.getLogger("swaami.endorsements")


async def _accepted_count(session: AsyncSession, endorser_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Endorsement)
        .where(
            Endorsement.endorser_id == endorser_id,
            Endorsement.status == EndorsementStatus.accepted.value,
        )
    )
    return result.scalar_one()


async def create_endorsement(session: AsyncSession, endorser: Profile) -> dict:
    await ensure_allowed(session, endorser, Action.endorse)

    if await _accepted_count(session, endorser.id) >= settings.max_endorsements_given:
        raise StateConflictError(
            f"You can vouch for at most {settings.max_endorsements_given} neighbours"
        )

    token = endorsement_token()
    endorsement = Endorsement(
        id=endorsement_id(),
        endorser_id=endorser.id,
        token=token,
        expires_at=datetime.now(UTC) + timedelta(days=settings.endorsement_expiry_days),
    )

    async def write() -> None:
        session.add(endorsement)
        await session.commit()

    await bounded(write, session=session)
    logger.info("Endorsement link %s created by %s", endorsement.id, endorser.id)

    return {
        "endorsement_id": endorsement.id,
        "token": token,
        "url": f"{settings.endorsement_base_url}/{token}",
        "expires_at": iso(endorsement.expires_at),
    }


async def accept_endorsement(session: AsyncSession, token: str, endorsed: Profile) -> dict:
    """Redeem an endorsement link, which records the endorsement verification."""
    result = await session.execute(select(Endorsement).where(Endorsement.token == token))
    endorsement = result.scalar_one_or_none()
    if endorsement is None:
        raise NotFoundError("endorsement", token)
    if endorsement.endorser_id == endorsed.id:
        raise ForbiddenError("You can't endorse yourself")
    if endorsement.status != EndorsementStatus.pending.value:
        raise StateConflictError(f"Endorsement {endorsement.id} already used")
    if as_utc(endorsement.expires_at) < datetime.now(UTC):
        raise StateConflictError(f"Endorsement {endorsement.id} expired")
    if await _accepted_count(session, endorsement.endorser_id) >= settings.max_endorsements_given:
        raise StateConflictError("This neighbour has no endorsements left to give")

    now = datetime.now(UTC)
    redeem = (
        update(Endorsement)
        .where(
            Endorsement.id == endorsement.id,
            Endorsement.status == EndorsementStatus.pending.value,
        )
        .values(
            status=EndorsementStatus.accepted.value,
            endorsed_id=endorsed.id,
            accepted_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    claimed = await bounded(lambda: session.execute(redeem), session=session)
    if claimed.rowcount == 0:
        await session.rollback()
        raise StateConflictError(f"Endorsement {endorsement.id} already used")

    # record_verification commits the endorsement update together with the event
    outcome = await record_verification(
        session,
        endorsed.id,
        VerificationType.endorsement,
        {"endorser_id": endorsement.endorser_id, "endorsement_id": endorsement.id},
    )
    logger.info("Endorsement %s accepted by %s", endorsement.id, endorsed.id)
    return {
        "endorsement_id": endorsement.id,
        "endorser_id": endorsement.endorser_id,
        "trust_tier": outcome["trust_tier"],
    }
