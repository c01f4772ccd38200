"""ClaimCoordinator: turn an open task into exactly one pending match.

Concurrent claims are settled by the store, not by this process: the status
check and the write are a single conditional UPDATE, and the partial unique
index on live matches backs it up.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.config import settings
from swaami.db_models import Match, MatchStatus, Profile, Task, TaskStatus
from swaami.errors import (
    AlreadyMatched,
    OwnTaskClaim,
    SwaamiError,
    TaskNotFound,
    TaskUnavailable,
)
from swaami.events import MATCHES, TASKS, Event, event_bus, messages_channel
from swaami.gate import Action
from swaami.ids import match_id as new_match_id
from swaami.retry import RetryConfig, bounded, store_call
from swaami.services.matches import match_to_dict
from swaami.services.messages import append_message
from swaami.services.tasks import LIVE_MATCH_STATUSES
from swaami.services.verifications import ensure_allowed
from swaami.state_machine import HELPER_ASSIGNED, task_transition

logger = logging.getLogger("swaami.claims")

ClaimProcedure = Callable[[AsyncSession, str, str], Awaitable[str]]


async def _classify_failure(session: AsyncSession, tid: str, helper_id: str) -> TaskUnavailable:
    row = (
        await session.execute(select(Task.status, Task.owner_id).where(Task.id == tid))
    ).one_or_none()
    if row is None:
        return TaskNotFound(tid)
    if row.owner_id == helper_id:
        return OwnTaskClaim(tid)
    if row.status in HELPER_ASSIGNED:
        return AlreadyMatched(tid)
    return TaskUnavailable(tid, f"task is {row.status}")


async def claim_task(session: AsyncSession, tid: str, helper_id: str) -> str:
    """Atomically assign ``helper_id`` to open task ``tid``; return the new match id.

    One transaction: either the task becomes matched and the pending match
    exists, or nothing changed and a TaskUnavailable subtype is raised.
    """
    now = datetime.now(UTC)
    matched = task_transition(TaskStatus.open, TaskStatus.matched)
    result = await session.execute(
        update(Task)
        .where(
            Task.id == tid,
            Task.status == TaskStatus.open.value,
            Task.owner_id != helper_id,
        )
        .values(status=matched, helper_id=helper_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        failure = await _classify_failure(session, tid, helper_id)
        await session.rollback()
        raise failure

    mid = new_match_id()
    session.add(
        Match(
            id=mid,
            task_id=tid,
            helper_id=helper_id,
            status=MatchStatus.pending.value,
            created_at=now,
            updated_at=now,
        )
    )
    try:
        await session.commit()
    except IntegrityError as exc:
        # The live-match index caught a second match for this task
        await session.rollback()
        raise AlreadyMatched(tid) from exc
    return mid


class ClaimCoordinator:
    """Gate, claim under retry with reconciliation, then greet and notify."""

    def __init__(
        self,
        session: AsyncSession,
        config: RetryConfig | None = None,
        procedure: ClaimProcedure = claim_task,
    ):
        self.session = session
        self.config = config
        self.procedure = procedure

    async def existing_match(self, tid: str, helper_id: str) -> str | None:
        """A live match for (task, helper), e.g. from an attempt whose reply was lost."""
        result = await self.session.execute(
            select(Match.id).where(
                Match.task_id == tid,
                Match.helper_id == helper_id,
                Match.status.in_(LIVE_MATCH_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def claim(self, tid: str, helper: Profile) -> dict:
        await ensure_allowed(self.session, helper, Action.claim_task)
        helper_id = helper.id

        mid = await store_call(
            lambda: self.procedure(self.session, tid, helper_id),
            session=self.session,
            write=True,
            config=self.config,
            reconcile=lambda: self.existing_match(tid, helper_id),
            name=f"claim {tid}",
        )
        match = await self.session.get(Match, mid, populate_existing=True)
        task = await self.session.get(Task, tid, populate_existing=True)
        logger.info("Task %s claimed by %s (match %s)", tid, helper_id, mid)

        outcome = {"match": match_to_dict(match), "task_id": tid, "task_status": task.status}
        greeting = settings.greeting_message.format(title=task.title)

        event_bus.publish(
            TASKS, Event(type="task_claimed", entity_id=tid, data={"helper_id": helper_id})
        )
        event_bus.publish(
            MATCHES, Event(type="match_created", entity_id=mid, data={"task_id": tid})
        )
        await self._greet(mid, helper_id, greeting)
        return outcome

    async def _greet(self, mid: str, helper_id: str, greeting: str) -> None:
        """Open the conversation for the helper. Failure never undoes the claim."""
        async def write():
            message = await append_message(self.session, mid, helper_id, greeting)
            await self.session.commit()
            return message

        try:
            message = await bounded(write, session=self.session)
        except SwaamiError as exc:
            await self.session.rollback()
            logger.warning("Could not send greeting for match %s: %s", mid, exc)
            return
        event_bus.publish(
            messages_channel(mid),
            Event(type="message_created", entity_id=message.id, data={"sender_id": helper_id}),
        )


async def claim(session: AsyncSession, tid: str, helper: Profile) -> dict:
    return await ClaimCoordinator(session).claim(tid, helper)
