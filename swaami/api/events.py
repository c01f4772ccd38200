"""SSE change feed endpoint."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from swaami.auth import get_current_profile
from swaami.database import get_db_session
from swaami.db_models import Profile
from swaami.errors import ValidationError
from swaami.events import MATCHES, TASKS, event_bus
from swaami.services.matches import get_match_for

router = APIRouter()

KEEPALIVE_INTERVAL = 30  # seconds


@router.get("/v1/events", responses={401: {"description": "Unauthorized"}})
async def event_stream(
    request: Request,
    channel: str = Query(TASKS, description="tasks, matches or messages:<match_id>"),
    profile: Profile = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Subscribe to change notifications. Refetch the entity when one arrives."""
    if channel.startswith("messages:"):
        # Only the two parties may watch a conversation
        await get_match_for(session, channel.split(":", 1)[1], profile.id)
    elif channel not in (TASKS, MATCHES):
        raise ValidationError(f"Unknown channel: {channel}")

    queue = event_bus.subscribe(channel)

    async def generate():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                    if event is None:
                        break
                    data = json.dumps({"type": event.type, "id": event.entity_id, **event.data})
                    yield f"event: {event.type}\ndata: {data}\n\n"
                except TimeoutError:
                    yield ": keepalive\n\n"

                if await request.is_disconnected():
                    break
        finally:
            event_bus.unsubscribe(channel, queue)

    return StreamingResponse(generate(), media_type="text/event-stream")
