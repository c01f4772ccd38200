"""Pydantic models for request/response schemas."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

from swaami.db_models import (
    Availability,
    Category,
    PhysicalEffort,
    Urgency,
    VerificationType,
)
from swaami.safety import sanitize_text

_PHONE_RE = re.compile(r"^\+?[0-9]{10,15}$")


def _clean(value: str | None) -> str | None:
    if value is None:
        return value
    return sanitize_text(value)


class RegisterRequest(BaseModel):
    display_name: str = Field(min_length=2, max_length=50, description="Name shown to neighbours")

    @field_validator("display_name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        v = sanitize_text(v)
        if len(v) < 2:
            raise ValueError("Display name must be at least 2 characters")
        return v


class RegisterResponse(BaseModel):
    profile_id: str
    api_key: str
    credits: int
    trust_tier: str
    message: str = "Welcome to Swaami! SAVE YOUR API KEY, it cannot be recovered."


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=2, max_length=50)
    phone: str | None = None
    city: str | None = Field(default=None, max_length=100)
    neighbourhood: str | None = Field(default=None, max_length=100)
    location_lat: float | None = Field(default=None, ge=-90, le=90)
    location_lng: float | None = Field(default=None, ge=-180, le=180)
    radius: int | None = Field(default=None, ge=100, le=2000, description="Metres")
    skills: list[str] | None = None
    availability: Availability | None = None

    @field_validator("display_name", "city", "neighbourhood")
    @classmethod
    def clean_text(cls, v: str | None) -> str | None:
        return _clean(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = re.sub(r"[\s()-]", "", v)
        if not _PHONE_RE.match(v):
            raise ValueError("Invalid phone number")
        return v

    @field_validator("radius", "availability")
    @classmethod
    def not_null(cls, v):
        # Both columns are NOT NULL: leave the field out to keep the current value
        if v is None:
            raise ValueError("Cannot be null")
        return v

    @field_validator("skills")
    @classmethod
    def validate_skills(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        if len(v) > 10:
            raise ValueError("Maximum 10 skills allowed")
        known = {c.value for c in Category}
        unknown = [s for s in v if s not in known]
        if unknown:
            raise ValueError(f"Unknown skill: {unknown[0]}")
        return list(dict.fromkeys(v))


class LevelProgress(BaseModel):
    current: int
    required: int
    percentage: float


class ProfileResponse(BaseModel):
    id: str
    display_name: str | None = None
    neighbourhood: str | None = None
    skills: list[str] = []
    availability: str
    tasks_completed: int
    reliability_score: float
    trust_tier: str
    level: str | None = None
    phone: str | None = None
    city: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None
    radius: int | None = None
    credits: int | None = None
    is_demo: bool | None = None
    onboarded: bool | None = None
    level_progress: LevelProgress | None = None
    created_at: str | None = None


class OnboardingResponse(BaseModel):
    is_onboarded: bool
    missing_fields: list[str]
    has_phone: bool
    has_location: bool
    has_skills: bool


class VerificationRequest(BaseModel):
    """Recorded by a verification sub-service after it confirmed a fact."""

    profile_id: str
    verification_type: VerificationType
    details: dict | None = None


class VerificationResponse(BaseModel):
    profile_id: str
    verification_type: str
    recorded: bool
    trust_tier: str


class TrustStatusResponse(BaseModel):
    trust_tier: str
    verifications: list[str]
    missing_for_tier_1: list[str]
    missing_for_tier_2: list[str]
    allowed_actions: list[str]


class EndorsementResponse(BaseModel):
    endorsement_id: str
    token: str
    url: str
    expires_at: str


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    category: Category = Category.other
    urgency: Urgency = Urgency.normal
    time_estimate: str | None = Field(default=None, max_length=50)
    physical_effort: PhysicalEffort | None = None
    people_needed: int = Field(default=1, ge=1, le=10)
    location_lat: float | None = Field(default=None, ge=-90, le=90)
    location_lng: float | None = Field(default=None, ge=-180, le=180)
    approx_address: str | None = Field(default=None, max_length=200)

    @field_validator("title")
    @classmethod
    def clean_title(cls, v: str) -> str:
        v = sanitize_text(v)
        if len(v) < 3:
            raise ValueError("Title must be at least 3 characters")
        return v

    @field_validator("description", "approx_address")
    @classmethod
    def clean_text(cls, v: str | None) -> str | None:
        return _clean(v)


class TaskResponse(BaseModel):
    id: str
    owner_id: str
    helper_id: str | None = None
    title: str
    description: str | None = None
    category: str
    urgency: str
    status: str
    time_estimate: str | None = None
    physical_effort: str | None = None
    people_needed: int = 1
    location_lat: float | None = None
    location_lng: float | None = None
    approx_address: str | None = None
    distance_m: float | None = None
    walk_time: str | None = None
    caution: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None
    cancelled_at: str | None = None


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int


class MatchResponse(BaseModel):
    id: str
    task_id: str
    helper_id: str
    status: str
    created_at: str | None = None
    accepted_at: str | None = None
    arrived_at: str | None = None
    completed_at: str | None = None


class ClaimResponse(BaseModel):
    match: MatchResponse
    task_id: str
    task_status: str


class MatchListResponse(BaseModel):
    matches: list[MatchResponse]
    total: int


class MessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=1000)

    @field_validator("content")
    @classmethod
    def clean_content(cls, v: str) -> str:
        v = sanitize_text(v)
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class MessageResponse(BaseModel):
    id: str
    match_id: str
    sender_id: str
    content: str
    created_at: str


class MessagesListResponse(BaseModel):
    messages: list[MessageResponse]
    total: int


class ActivityResponse(BaseModel):
    tasks_completed_today: int
    active_helpers: int


class CreditLedgerEntry(BaseModel):
    id: str
    amount: int
    reason: str
    task_id: str | None = None
    created_at: str | None = None


class CreditBalanceResponse(BaseModel):
    balance: int
    ledger: list[CreditLedgerEntry]
    total: int


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
