"""Match routes: the helper's progress and the chat between both parties."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from swaami.auth import AuthProfile
from swaami.config import settings
from swaami.content import parse_body, render_response, validated
from swaami.database import get_db_session
from swaami.db_models import MatchStatus, Profile
from swaami.models import (
    ErrorResponse,
    MatchListResponse,
    MatchResponse,
    MessageRequest,
    MessageResponse,
    MessagesListResponse,
)
from swaami.rate_limit import limiter
from swaami.services.matches import (
    accept_match,
    cancel_match,
    complete_match,
    get_match_for,
    list_matches,
    mark_arrived,
    match_to_dict,
)
from swaami.services.messages import list_messages, send_message

router = APIRouter()

_MATCH_ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.get("/v1/matches", response_model=MatchListResponse)
@limiter.limit(settings.rate_limit_read)
async def my_matches(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    status: MatchStatus | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Matches where you are the helper or the requester."""
    result = await list_matches(
        session, profile, status=status.value if status else None, limit=limit, offset=offset
    )
    return render_response(request, result)


@router.get("/v1/matches/{match_id}", response_model=MatchResponse, responses=_MATCH_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def match_detail(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    match, _ = await get_match_for(session, match_id, profile.id)
    return render_response(request, match_to_dict(match))


@router.post("/v1/matches/{match_id}/accept", response_model=MatchResponse, responses=_MATCH_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def accept(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    return render_response(request, await accept_match(session, match_id, profile))


@router.post("/v1/matches/{match_id}/arrive", response_model=MatchResponse, responses=_MATCH_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def arrive(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    """Tell the requester you're there. The task moves to in-progress."""
    return render_response(request, await mark_arrived(session, match_id, profile))


@router.post(
    "/v1/matches/{match_id}/complete", response_model=MatchResponse, responses=_MATCH_ERRORS
)
@limiter.limit(settings.rate_limit_create)
async def complete(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    """Finish the favour. Completes the task and credits the helper."""
    return render_response(request, await complete_match(session, match_id, profile))


@router.post("/v1/matches/{match_id}/cancel", response_model=MatchResponse, responses=_MATCH_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def cancel(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    return render_response(request, await cancel_match(session, match_id, profile))


@router.get(
    "/v1/matches/{match_id}/messages",
    response_model=MessagesListResponse,
    responses=_MATCH_ERRORS,
)
@limiter.limit(settings.rate_limit_read)
async def messages(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    result = await list_messages(session, match_id, profile, limit=limit, offset=offset)
    return render_response(request, result)


@router.post(
    "/v1/matches/{match_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, **_MATCH_ERRORS},
)
@limiter.limit(settings.rate_limit_message)
async def post_message(
    request: Request,
    match_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    body = await parse_body(request, body_key="content")
    req = validated(MessageRequest, body)
    result = await send_message(session, match_id, profile, req.content)
    return render_response(request, result, status_code=201)
