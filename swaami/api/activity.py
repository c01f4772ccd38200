"""Public activity counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from swaami.config import settings
from swaami.content import render_response
from swaami.database import get_db_session
from swaami.models import ActivityResponse
from swaami.rate_limit import limiter
from swaami.services.tasks import activity_stats

router = APIRouter()


@router.get("/v1/activity", response_model=ActivityResponse)
@limiter.limit(settings.rate_limit_read)
async def activity(request: Request, session=Depends(get_db_session)):
    """How many favours were done today and how many neighbours are helping."""
    return render_response(request, await activity_stats(session))
