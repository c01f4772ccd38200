"""MatchLifecycle: a helper's progress through a claimed task.

Each transition is a conditional UPDATE on the current status, committed in
one transaction together with its effect on the task (and, on completion, the
helper's counters).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.config import settings
from swaami.db_models import Match, MatchStatus, Profile, Task, TaskStatus
from swaami.errors import ForbiddenError, NotFoundError, StateConflictError, SwaamiError
from swaami.events import MATCHES, TASKS, Event, event_bus
from swaami.gate import Action
from swaami.retry import store_call
from swaami.services.profiles import adjust_counters
from swaami.services.tasks import cancel_task_and_match
from swaami.services.verifications import ensure_allowed
from swaami.state_machine import match_transition, task_transition
from swaami.utils import iso

logger = logging.getLogger("swaami.matches")

TASK_EVENTS = {MatchStatus.arrived: "task_started", MatchStatus.completed: "task_completed"}


def match_to_dict(match: Match) -> dict:
    return {
        "id": match.id,
        "task_id": match.task_id,
        "helper_id": match.helper_id,
        "status": match.status,
        "created_at": iso(match.created_at),
        "accepted_at": iso(match.accepted_at),
        "arrived_at": iso(match.arrived_at),
        "completed_at": iso(match.completed_at),
    }


async def _load(session: AsyncSession, mid: str) -> tuple[Match, Task]:
    match = await session.get(Match, mid, populate_existing=True)
    if match is None:
        raise NotFoundError("match", mid)
    task = await session.get(Task, match.task_id, populate_existing=True)
    if task is None:
        raise NotFoundError("task", match.task_id)
    return match, task


async def get_match_for(session: AsyncSession, mid: str, profile_id: str) -> tuple[Match, Task]:
    """Load a match the profile takes part in, as helper or as task owner."""
    match, task = await _load(session, mid)
    if profile_id not in (match.helper_id, task.owner_id):
        raise ForbiddenError("You are not part of this match")
    return match, task


async def list_matches(
    session: AsyncSession,
    profile: Profile,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    where = [or_(Match.helper_id == profile.id, Task.owner_id == profile.id)]
    if status:
        where.append(Match.status == status)
    total = (
        await session.execute(
            select(func.count())
            .select_from(Match)
            .join(Task, Task.id == Match.task_id)
            .where(*where)
        )
    ).scalar_one()
    result = await session.execute(
        select(Match)
        .join(Task, Task.id == Match.task_id)
        .where(*where)
        .order_by(Match.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return {"matches": [match_to_dict(m) for m in result.scalars().all()], "total": total}


async def _set_status(
    session: AsyncSession, entity, current: str, target: str, **values
) -> None:
    result = await session.execute(
        update(type(entity))
        .where(type(entity).id == entity.id, type(entity).status == current)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StateConflictError(f"{type(entity).__name__} {entity.id} changed concurrently")


async def _advance(
    session: AsyncSession, mid: str, helper: Profile, target: MatchStatus, action: Action
) -> dict:
    """Helper-only forward step, with its coupled effect on the task."""
    await ensure_allowed(session, helper, action)
    helper_id = helper.id

    async def procedure() -> str:
        match, task = await _load(session, mid)
        if match.helper_id != helper_id:
            raise ForbiddenError("Only the helper can update this match")
        now = datetime.now(UTC)
        try:
            status = match_transition(match.status, target)
            if target == MatchStatus.accepted:
                await _set_status(
                    session, match, match.status, status, accepted_at=now, updated_at=now
                )
            elif target == MatchStatus.arrived:
                task_status = task_transition(task.status, TaskStatus.in_progress)
                await _set_status(
                    session, match, match.status, status, arrived_at=now, updated_at=now
                )
                await _set_status(session, task, task.status, task_status, updated_at=now)
            elif target == MatchStatus.completed:
                task_status = task_transition(task.status, TaskStatus.completed)
                await _set_status(
                    session, match, match.status, status, completed_at=now, updated_at=now
                )
                await _set_status(
                    session, task, task.status, task_status, completed_at=now, updated_at=now
                )
                await adjust_counters(
                    session,
                    helper_id,
                    credits=settings.completion_credits,
                    tasks_completed=1,
                    reason="task_completed",
                    task_id=task.id,
                )
        except SwaamiError:
            await session.rollback()
            raise
        await session.commit()
        return match.id

    async def reconcile() -> str | None:
        match = await session.get(Match, mid, populate_existing=True)
        return match.id if match is not None and match.status == target.value else None

    await store_call(
        procedure, session=session, write=True, reconcile=reconcile, name=f"{target.value} {mid}"
    )
    match, task = await _load(session, mid)
    logger.info("Match %s %s by %s", mid, target.value, helper_id)

    event_bus.publish(
        MATCHES, Event(type=f"match_{target.value}", entity_id=mid, data={"task_id": task.id})
    )
    task_event = TASK_EVENTS.get(target)
    if task_event:
        event_bus.publish(TASKS, Event(type=task_event, entity_id=task.id))
    return match_to_dict(match)


async def accept_match(session: AsyncSession, mid: str, helper: Profile) -> dict:
    return await _advance(session, mid, helper, MatchStatus.accepted, Action.claim_task)


async def mark_arrived(session: AsyncSession, mid: str, helper: Profile) -> dict:
    return await _advance(session, mid, helper, MatchStatus.arrived, Action.mark_arrived)


async def complete_match(session: AsyncSession, mid: str, helper: Profile) -> dict:
    return await _advance(session, mid, helper, MatchStatus.completed, Action.complete_match)


async def cancel_match(session: AsyncSession, mid: str, profile: Profile) -> dict:
    """Either party backs out; the task is cancelled with it."""
    profile_id = profile.id

    async def procedure() -> str:
        match, task = await get_match_for(session, mid, profile_id)
        match_transition(match.status, MatchStatus.cancelled)
        try:
            await cancel_task_and_match(session, task, datetime.now(UTC))
        except SwaamiError:
            await session.rollback()
            raise
        await session.commit()
        return match.id

    async def reconcile() -> str | None:
        match = await session.get(Match, mid, populate_existing=True)
        cancelled = match is not None and match.status == MatchStatus.cancelled.value
        return match.id if cancelled else None

    await store_call(
        procedure, session=session, write=True, reconcile=reconcile, name=f"cancel {mid}"
    )
    match, task = await _load(session, mid)
    logger.info("Match %s cancelled by %s", mid, profile_id)

    event_bus.publish(
        MATCHES, Event(type="match_cancelled", entity_id=mid, data={"task_id": task.id})
    )
    event_bus.publish(TASKS, Event(type="task_cancelled", entity_id=task.id))
    return match_to_dict(match)
