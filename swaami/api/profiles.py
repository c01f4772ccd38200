"""Registration and profile routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from swaami.auth import AuthProfile
from swaami.config import settings
from swaami.content import parse_body, render_response, validated
from swaami.database import get_db_session
from swaami.db_models import Profile
from swaami.models import (
    ErrorResponse,
    OnboardingResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    RegisterResponse,
)
from swaami.onboarding import onboarding_status
from swaami.rate_limit import limiter
from swaami.services.profiles import (
    anonymize_profile,
    get_profile,
    profile_to_dict,
    register,
    update_profile,
)

router = APIRouter()


@router.post(
    "/v1/register",
    response_model=RegisterResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_register)
async def register_profile(request: Request, session=Depends(get_db_session)):
    """Create an account. The API key is shown once."""
    body = await parse_body(request)
    req = validated(RegisterRequest, body)
    result = await register(session, req.display_name)
    return render_response(request, RegisterResponse(**result), status_code=201)


@router.get("/v1/me", response_model=ProfileResponse, responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def me(request: Request, profile: Profile = AuthProfile):
    return render_response(request, profile_to_dict(profile))


@router.patch(
    "/v1/me",
    response_model=ProfileResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def update_me(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Update your profile. Only the fields sent are changed."""
    body = await parse_body(request)
    req = validated(ProfileUpdateRequest, body)
    profile = await update_profile(session, profile, req.model_dump(exclude_unset=True))
    return render_response(request, profile_to_dict(profile))


@router.delete("/v1/me", responses={401: {"model": ErrorResponse}})
async def delete_me(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Delete your account. Personal details are erased and the API key stops working."""
    result = await anonymize_profile(session, profile)
    return render_response(request, result)


@router.get(
    "/v1/me/onboarding",
    response_model=OnboardingResponse,
    responses={401: {"model": ErrorResponse}},
)
async def my_onboarding(request: Request, profile: Profile = AuthProfile):
    status = onboarding_status(profile)
    return render_response(
        request,
        {
            "is_onboarded": status.is_onboarded,
            "missing_fields": status.missing_fields,
            "has_phone": status.has_phone,
            "has_location": status.has_location,
            "has_skills": status.has_skills,
        },
    )


@router.get(
    "/v1/profiles/{profile_id}",
    response_model=ProfileResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def public_profile(
    request: Request,
    profile_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    """A neighbour's public profile (no contact details)."""
    other = await get_profile(session, profile_id)
    return render_response(request, profile_to_dict(other, private=False))
