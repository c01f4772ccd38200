"""Chat between the two parties of a match."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.config import settings
from swaami.db_models import MatchStatus, Message, Profile
from swaami.errors import StateConflictError, ValidationError
from swaami.events import Event, event_bus, messages_channel
from swaami.gate import Action
from swaami.ids import message_id
from swaami.retry import bounded
from swaami.safety import sanitize_text
from swaami.services.matches import get_match_for
from swaami.services.verifications import ensure_allowed
from swaami.utils import as_utc, iso

logger = logging.getLogger("swaami.messages")


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "match_id": message.match_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": iso(message.created_at),
    }


async def append_message(session: AsyncSession, mid: str, sender_id: str, content: str) -> Message:
    """Sanitize and add a message. Does not commit.

    ``created_at`` is kept strictly increasing within the match even when the
    clock does not move between two inserts.
    """
    content = sanitize_text(content)
    if not content:
        raise ValidationError("Message cannot be empty")
    if len(content) > settings.message_max_length:
        raise ValidationError(f"Message too long (max {settings.message_max_length} characters)")

    latest = (
        await session.execute(select(func.max(Message.created_at)).where(Message.match_id == mid))
    ).scalar_one_or_none()
    now = datetime.now(UTC)
    if latest is not None and as_utc(latest) >= now:
        now = as_utc(latest) + timedelta(microseconds=1)

    message = Message(
        id=message_id(), match_id=mid, sender_id=sender_id, content=content, created_at=now
    )
    session.add(message)
    return message


async def send_message(session: AsyncSession, mid: str, sender: Profile, content: str) -> dict:
    await ensure_allowed(session, sender, Action.send_message)
    sender_id = sender.id
    match, _ = await get_match_for(session, mid, sender_id)
    if match.status == MatchStatus.cancelled.value:
        raise StateConflictError(f"Match {mid} is cancelled")

    async def procedure() -> Message:
        message = await append_message(session, mid, sender_id, content)
        await session.commit()
        return message

    # Not retried: a lost commit would otherwise post the message twice
    message = await bounded(procedure, session=session)
    logger.debug("Message %s on match %s", message.id, mid)

    event_bus.publish(
        messages_channel(mid),
        Event(type="message_created", entity_id=message.id, data={"sender_id": sender_id}),
    )
    return message_to_dict(message)


async def list_messages(
    session: AsyncSession,
    mid: str,
    profile: Profile,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Messages in insertion order (oldest first)."""
    await get_match_for(session, mid, profile.id)
    total = (
        await session.execute(
            select(func.count()).select_from(Message).where(Message.match_id == mid)
        )
    ).scalar_one()
    result = await session.execute(
        select(Message)
        .where(Message.match_id == mid)
        .order_by(Message.created_at, Message.id)
        .offset(offset)
        .limit(limit)
    )
    return {"messages": [message_to_dict(m) for m in result.scalars().all()], "total": total}
