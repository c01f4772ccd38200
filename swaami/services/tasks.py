"""Task posting, browsing and cancellation."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from swaami.db_models import Match, MatchStatus, Profile, Task, TaskStatus
from swaami.errors import ForbiddenError, NotFoundError, StateConflictError, ValidationError
from swaami.events import MATCHES, TASKS, Event, event_bus
from swaami.gate import Action
from swaami.ids import task_id as new_task_id
from swaami.models import TaskCreateRequest
from swaami.retry import bounded
from swaami.safety import check_content, is_high_risk_category
from swaami.services.verifications import ensure_allowed
from swaami.state_machine import match_transition, task_transition
from swaami.utils import distance_m, iso, walk_time

logger = logging.getLogger("swaami.tasks")

LIVE_MATCH_STATUSES = (
    MatchStatus.pending.value,
    MatchStatus.accepted.value,
    MatchStatus.arrived.value,
)


def task_to_dict(task: Task, origin: tuple[float, float] | None = None) -> dict:
    text = f"{task.title} {task.description or ''}"
    data = {
        "id": task.id,
        "owner_id": task.owner_id,
        "helper_id": task.helper_id,
        "title": task.title,
        "description": task.description,
        "category": task.category,
        "urgency": task.urgency,
        "status": task.status,
        "time_estimate": task.time_estimate,
        "physical_effort": task.physical_effort,
        "people_needed": task.people_needed,
        "location_lat": task.location_lat,
        "location_lng": task.location_lng,
        "approx_address": task.approx_address,
        "distance_m": None,
        "walk_time": None,
        "caution": check_content(text).caution or is_high_risk_category(task.category),
        "created_at": iso(task.created_at),
        "updated_at": iso(task.updated_at),
        "completed_at": iso(task.completed_at),
        "cancelled_at": iso(task.cancelled_at),
    }
    if origin and task.location_lat is not None and task.location_lng is not None:
        dist = distance_m(origin[0], origin[1], task.location_lat, task.location_lng)
        data["distance_m"] = round(dist)
        data["walk_time"] = walk_time(dist)
    return data


async def create_task(session: AsyncSession, owner: Profile, request: TaskCreateRequest) -> dict:
    await ensure_allowed(session, owner, Action.post_task)

    check = check_content(f"{request.title} {request.description or ''}")
    if check.blocked:
        logger.info("Blocked task from %s: %s", owner.id, check.flags)
        raise ValidationError(check.reason or "This content cannot be posted.")

    # Default to the owner's saved location
    lat, lng = request.location_lat, request.location_lng
    if lat is None or lng is None:
        lat, lng = owner.location_lat, owner.location_lng

    task = Task(
        id=new_task_id(),
        owner_id=owner.id,
        title=request.title,
        description=request.description,
        original_description=request.description,
        category=request.category.value,
        urgency=request.urgency.value,
        time_estimate=request.time_estimate,
        physical_effort=request.physical_effort.value if request.physical_effort else None,
        people_needed=request.people_needed,
        location_lat=lat,
        location_lng=lng,
        approx_address=request.approx_address,
    )

    # Not retried: a lost commit acknowledgement would post the task twice
    async def write() -> None:
        session.add(task)
        await session.commit()

    await bounded(write, session=session)
    logger.info("Task %s posted by %s", task.id, owner.id)

    event_bus.publish(TASKS, Event(type="task_created", entity_id=task.id))
    return task_to_dict(task)


async def get_task(session: AsyncSession, tid: str) -> Task:
    task = await session.get(Task, tid)
    if task is None:
        raise NotFoundError("task", tid)
    return task


async def list_open_tasks(
    session: AsyncSession,
    viewer: Profile,
    category: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    radius: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    """Open tasks from other people, newest first.

    With a known origin (query or the viewer's saved location) tasks outside
    ``radius`` are dropped; tasks without coordinates always stay.
    """
    await ensure_allowed(session, viewer, Action.browse)

    query = select(Task).where(
        Task.status == TaskStatus.open.value, Task.owner_id != viewer.id
    )
    if category:
        query = query.where(Task.category == category)
    result = await session.execute(query.order_by(Task.created_at.desc()))
    tasks = list(result.scalars().all())

    if lat is None or lng is None:
        lat, lng = viewer.location_lat, viewer.location_lng
    origin = (lat, lng) if lat is not None and lng is not None else None
    radius = radius or viewer.radius

    rows = [task_to_dict(t, origin) for t in tasks]
    if origin:
        rows = [r for r in rows if r["distance_m"] is None or r["distance_m"] <= radius]
    return {"tasks": rows[offset : offset + limit], "total": len(rows)}


async def list_my_tasks(
    session: AsyncSession, profile: Profile, limit: int = 20, offset: int = 0
) -> dict:
    """Tasks the profile posted or is helping with."""
    where = or_(Task.owner_id == profile.id, Task.helper_id == profile.id)
    total = (
        await session.execute(select(func.count()).select_from(Task).where(where))
    ).scalar_one()
    result = await session.execute(
        select(Task).where(where).order_by(Task.created_at.desc()).offset(offset).limit(limit)
    )
    return {"tasks": [task_to_dict(t) for t in result.scalars().all()], "total": total}


async def live_match(session: AsyncSession, tid: str) -> Match | None:
    result = await session.execute(
        select(Match).where(Match.task_id == tid, Match.status.in_(LIVE_MATCH_STATUSES))
    )
    return result.scalar_one_or_none()


async def cancel_task_and_match(session: AsyncSession, task: Task, now: datetime) -> str | None:
    """Move the task to cancelled, clear its helper and cancel its live match.

    Status checks are part of each UPDATE; a concurrent change makes this
    raise StateConflictError. Does not commit. Returns the cancelled match id.
    """
    target = task_transition(task.status, TaskStatus.cancelled)
    result = await session.execute(
        update(Task)
        .where(Task.id == task.id, Task.status == task.status)
        .values(status=target, helper_id=None, cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StateConflictError(f"Task {task.id} changed concurrently")

    match = await live_match(session, task.id)
    if match is None:
        return None
    cancelled = match_transition(match.status, MatchStatus.cancelled)
    result = await session.execute(
        update(Match)
        .where(Match.id == match.id, Match.status == match.status)
        .values(status=cancelled, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StateConflictError(f"Match {match.id} changed concurrently")
    return match.id


async def cancel_task(session: AsyncSession, tid: str, profile: Profile) -> dict:
    task = await get_task(session, tid)
    if profile.id not in (task.owner_id, task.helper_id):
        raise ForbiddenError("Only the requester or the helper can cancel this task")

    async def write() -> str | None:
        try:
            match_id = await cancel_task_and_match(session, task, datetime.now(UTC))
        except StateConflictError:
            await session.rollback()
            raise
        await session.commit()
        return match_id

    match_id = await bounded(write, session=session)
    await session.refresh(task)
    logger.info("Task %s cancelled by %s", tid, profile.id)

    event_bus.publish(TASKS, Event(type="task_cancelled", entity_id=tid))
    if match_id:
        event_bus.publish(
            MATCHES, Event(type="match_cancelled", entity_id=match_id, data={"task_id": tid})
        )
    return task_to_dict(task)


async def activity_stats(session: AsyncSession, now: datetime | None = None) -> dict:
    """Favours completed since midnight (UTC) and neighbours who have helped at least once."""
    now = now or datetime.now(UTC)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    completed_today = (
        await session.execute(
            select(func.count())
            .select_from(Task)
            .where(Task.status == TaskStatus.completed.value, Task.completed_at >= midnight)
        )
    ).scalar_one()
    active_helpers = (
        await session.execute(
            select(func.count())
            .select_from(Profile)
            .where(Profile.tasks_completed > 0, Profile.deleted_at.is_(None))
        )
    ).scalar_one()
    return {"tasks_completed_today": completed_today, "active_helpers": active_helpers}
