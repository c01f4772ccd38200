"""Task routes: post, browse, claim, cancel."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from swaami.auth import AuthProfile
from swaami.config import settings
from swaami.content import parse_body, render_response, validated
from swaami.database import get_db_session
from swaami.db_models import Category, Profile
from swaami.gate import Action
from swaami.models import (
    ClaimResponse,
    ErrorResponse,
    TaskCreateRequest,
    TaskListResponse,
    TaskResponse,
)
from swaami.rate_limit import limiter
from swaami.services.claims import claim
from swaami.services.tasks import (
    cancel_task,
    create_task,
    get_task,
    list_my_tasks,
    list_open_tasks,
    task_to_dict,
)
from swaami.services.verifications import ensure_allowed

router = APIRouter()


@router.post(
    "/v1/tasks",
    response_model=TaskResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def post_task(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Ask your neighbours for help. Requires a verified (tier 1) account."""
    body = await parse_body(request, body_key="description")
    req = validated(TaskCreateRequest, body)
    task = await create_task(session, profile, req)
    return render_response(
        request,
        task,
        status_code=201,
        headers={"X-Task-Id": task["id"], "X-Status": task["status"]},
    )


@router.get(
    "/v1/tasks",
    response_model=TaskListResponse,
    responses={401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def browse_tasks(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    category: Category | None = None,
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius: int | None = Query(None, ge=100, le=2000),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Open requests nearby, newest first."""
    result = await list_open_tasks(
        session,
        profile,
        category=category.value if category else None,
        lat=lat,
        lng=lng,
        radius=radius,
        limit=limit,
        offset=offset,
    )
    return render_response(request, result)


@router.get(
    "/v1/tasks/mine",
    response_model=TaskListResponse,
    responses={401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def my_tasks(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Requests you posted and requests you are helping with."""
    return render_response(request, await list_my_tasks(session, profile, limit, offset))


@router.get(
    "/v1/tasks/{task_id}",
    response_model=TaskResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def task_detail(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    await ensure_allowed(session, profile, Action.browse)
    task = await get_task(session, task_id)
    origin = None
    if profile.location_lat is not None and profile.location_lng is not None:
        origin = (profile.location_lat, profile.location_lng)
    return render_response(request, task_to_dict(task, origin))


@router.post(
    "/v1/tasks/{task_id}/claim",
    response_model=ClaimResponse,
    status_code=201,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_claim)
async def claim_task_route(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    """Offer to help. Exactly one helper wins an open task; everyone else gets a 409."""
    result = await claim(session, task_id, profile)
    return render_response(
        request,
        result,
        status_code=201,
        headers={"X-Task-Id": task_id, "X-Match-Id": result["match"]["id"]},
    )


@router.post(
    "/v1/tasks/{task_id}/cancel",
    response_model=TaskResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def cancel_task_route(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    result = await cancel_task(session, task_id, profile)
    return render_response(request, result)
