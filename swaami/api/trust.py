"""Trust tier, verification and endorsement routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from swaami.auth import AuthProfile, verify_service_key
from swaami.config import settings
from swaami.content import parse_body, render_response, validated
from swaami.database import get_db_session
from swaami.db_models import Profile
from swaami.models import (
    EndorsementResponse,
    ErrorResponse,
    TrustStatusResponse,
    VerificationRequest,
    VerificationResponse,
)
from swaami.rate_limit import limiter
from swaami.services.endorsements import accept_endorsement, create_endorsement
from swaami.services.verifications import record_verification, trust_status

router = APIRouter()


@router.get(
    "/v1/me/trust",
    response_model=TrustStatusResponse,
    responses={401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def my_trust(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Your trust tier, what you have verified and what unlocks the next tier."""
    return render_response(request, await trust_status(session, profile))


@router.post(
    "/v1/verifications",
    response_model=VerificationResponse,
    dependencies=[Depends(verify_service_key)],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def report_verification(request: Request, session=Depends(get_db_session)):
    """Called by a verification service once it has confirmed a fact about a user."""
    body = await parse_body(request)
    req = validated(VerificationRequest, body)
    result = await record_verification(
        session, req.profile_id, req.verification_type, req.details
    )
    return render_response(request, result, status_code=201 if result["recorded"] else 200)


@router.post(
    "/v1/endorsements",
    response_model=EndorsementResponse,
    status_code=201,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def new_endorsement(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Create a one-time link that vouches for a neighbour."""
    result = await create_endorsement(session, profile)
    return render_response(request, result, status_code=201)


@router.post(
    "/v1/endorsements/{token}/accept",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def redeem_endorsement(
    request: Request,
    token: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    result = await accept_endorsement(session, token, profile)
    return render_response(request, result)
