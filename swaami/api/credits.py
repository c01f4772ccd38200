"""Credit/balance routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from swaami.auth import AuthProfile
from swaami.config import settings
from swaami.content import render_response
from swaami.database import get_db_session
from swaami.db_models import Profile
from swaami.models import CreditBalanceResponse, ErrorResponse
from swaami.rate_limit import limiter
from swaami.services.credits import get_ledger

router = APIRouter()


@router.get(
    "/v1/me/credits",
    response_model=CreditBalanceResponse,
    responses={401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def my_credits(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    """Get your credit balance and transaction ledger."""
    ledger, total = await get_ledger(session, profile.id, offset=offset, limit=limit)
    return render_response(request, {"balance": profile.credits, "total": total, "ledger": ledger})
