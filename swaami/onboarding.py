"""Derived profile state: onboarding completeness and helper level."""

from __future__ import annotations

from dataclasses import dataclass, field

from swaami.db_models import Profile
from swaami.utils import safe_json_loads

REQUIRED_FIELDS = ("phone", "city", "neighbourhood", "skills")


@dataclass(frozen=True)
class OnboardingStatus:
    is_onboarded: bool
    missing_fields: list[str] = field(default_factory=list)
    has_phone: bool = False
    has_location: bool = False
    has_skills: bool = False


def onboarding_status(profile: Profile | None) -> OnboardingStatus:
    if profile is None or profile.deleted_at is not None:
        return OnboardingStatus(False, list(REQUIRED_FIELDS))

    has_phone = bool(profile.phone)
    has_city = bool(profile.city)
    has_neighbourhood = bool(profile.neighbourhood)
    has_skills = bool(safe_json_loads(profile.skills))

    missing = [
        name
        for name, present in (
            ("phone", has_phone),
            ("city", has_city),
            ("neighbourhood", has_neighbourhood),
            ("skills", has_skills),
        )
        if not present
    ]
    return OnboardingStatus(
        is_onboarded=not missing,
        missing_fields=missing,
        has_phone=has_phone,
        has_location=has_city and has_neighbourhood,
        has_skills=has_skills,
    )


# Helper levels by completed favours, lowest first
HELPER_LEVELS = (
    ("new_neighbour", 0),
    ("good_neighbour", 3),
    ("trusted_neighbour", 10),
    ("community_pillar", 25),
)


@dataclass(frozen=True)
class HelperLevel:
    level: str
    progress: int
    required: int

    @property
    def percentage(self) -> float:
        if not self.required:
            return 100.0
        return min(self.progress / self.required * 100, 100.0)


def helper_level(tasks_completed: int) -> HelperLevel:
    """Level reached and progress towards the next one.

    At the top level ``required`` is 0 and the progress bar is full.
    """
    tasks_completed = max(tasks_completed, 0)
    index = 0
    for i, (_, threshold) in enumerate(HELPER_LEVELS):
        if tasks_completed >= threshold:
            index = i
    name, floor = HELPER_LEVELS[index]
    if index + 1 < len(HELPER_LEVELS):
        required = HELPER_LEVELS[index + 1][1] - floor
    else:
        required = 0
    return HelperLevel(level=name, progress=tasks_completed - floor, required=required)
