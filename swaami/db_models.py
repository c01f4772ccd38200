"""SQLModel table definitions for Swaami."""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


class TaskStatus(str, enum.Enum):
    open = "open"
    matched = "matched"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


class MatchStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    arrived = "arrived"
    completed = "completed"
    cancelled = "cancelled"


class TrustTier(str, enum.Enum):
    tier_0 = "tier_0"
    tier_1 = "tier_1"
    tier_2 = "tier_2"


class VerificationType(str, enum.Enum):
    email = "email"
    phone_sms = "phone_sms"
    phone_whatsapp = "phone_whatsapp"
    social_google = "social_google"
    social_apple = "social_apple"
    photos_complete = "photos_complete"
    endorsement = "endorsement"
    mfa_enabled = "mfa_enabled"


class Availability(str, enum.Enum):
    now = "now"
    later = "later"
    this_week = "this-week"


class Urgency(str, enum.Enum):
    urgent = "urgent"
    normal = "normal"
    flexible = "flexible"


class Category(str, enum.Enum):
    groceries = "groceries"
    tech = "tech"
    transport = "transport"
    cooking = "cooking"
    pets = "pets"
    handyman = "handyman"
    childcare = "childcare"
    language = "language"
    medical = "medical"
    garden = "garden"
    other = "other"


class PhysicalEffort(str, enum.Enum):
    light = "light"
    moderate = "moderate"
    heavy = "heavy"


class EndorsementStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# Status columns are plain strings holding the enum *values*; conditional updates
# and the partial index on matches compare against those values directly.


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    user_ref: str = Field(unique=True, index=True)
    display_name: str | None = None
    phone: str | None = None
    city: str | None = None
    neighbourhood: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None
    radius: int = Field(default=500)
    skills: str | None = None  # JSON-encoded list of category tags
    availability: str = Field(default=Availability.now.value)
    credits: int = Field(default=0)
    tasks_completed: int = Field(default=0)
    reliability_score: float = Field(default=5.0)
    trust_tier: str = Field(default=TrustTier.tier_0.value)
    is_demo: bool = Field(default=False)
    key_hash: str | None = None
    key_fingerprint: str | None = Field(default=None, index=True)
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class VerificationEvent(SQLModel, table=True):
    __tablename__ = "verification_events"
    __table_args__ = (
        Index(
            "ix_verification_events_profile_type", "profile_id", "verification_type", unique=True
        ),
    )

    id: str = Field(primary_key=True)
    profile_id: str = Field(foreign_key="profiles.id", index=True)
    verification_type: str
    details: str | None = None  # JSON-encoded, opaque to the core
    verified_at: datetime = Field(default_factory=_utcnow)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_status_created_at", "status", "created_at"),)

    id: str = Field(primary_key=True)
    owner_id: str = Field(foreign_key="profiles.id", index=True)
    helper_id: str | None = Field(default=None, foreign_key="profiles.id", index=True)
    title: str
    description: str | None = None
    original_description: str | None = None
    category: str = Field(default=Category.other.value, index=True)
    urgency: str = Field(default=Urgency.normal.value)
    status: str = Field(default=TaskStatus.open.value, index=True)
    time_estimate: str | None = None
    physical_effort: str | None = None
    people_needed: int = Field(default=1)
    location_lat: float | None = None
    location_lng: float | None = None
    approx_address: str | None = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class Match(SQLModel, table=True):
    __tablename__ = "matches"
    __table_args__ = (
        # Store-level backstop: one live match per task.
        Index(
            "ux_matches_active_task",
            "task_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    helper_id: str = Field(foreign_key="profiles.id", index=True)
    status: str = Field(default=MatchStatus.pending.value)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    accepted_at: datetime | None = None
    arrived_at: datetime | None = None
    completed_at: datetime | None = None


class Message(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_match_created", "match_id", "created_at"),)

    id: str = Field(primary_key=True)
    match_id: str = Field(foreign_key="matches.id")
    sender_id: str = Field(foreign_key="profiles.id")
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


class Endorsement(SQLModel, table=True):
    __tablename__ = "endorsements"

    id: str = Field(primary_key=True)
    endorser_id: str = Field(foreign_key="profiles.id", index=True)
    endorsed_id: str | None = Field(default=None, foreign_key="profiles.id", index=True)
    token: str = Field(unique=True, index=True)
    status: str = Field(default=EndorsementStatus.pending.value)
    expires_at: datetime
    accepted_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class CreditLedger(SQLModel, table=True):
    __tablename__ = "credit_ledger"
    __table_args__ = (Index("ix_credit_ledger_profile_created", "profile_id", "created_at"),)

    id: str = Field(primary_key=True)
    profile_id: str = Field(foreign_key="profiles.id", index=True)
    amount: int
    reason: str
    task_id: str | None = Field(default=None, foreign_key="tasks.id")
    created_at: datetime = Field(default_factory=_utcnow)
