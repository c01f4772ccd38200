"""Content sanitizing and moderation for user-supplied text."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)

BLOCKED_PATTERNS = [
    re.compile(r"\b(drugs?|cocaine|heroin|meth|weed|marijuana|pills|substances?)\b", re.I),
    re.compile(r"\b(gun|weapon|knife|firearm|ammunition)\b", re.I),
    re.compile(r"\b(escort|massage.*special|happy ending|intimate)\b", re.I),
    re.compile(r"\b(package.*midnight|pickup.*cash|no questions|discreet.*delivery)\b", re.I),
    re.compile(r"\b(password|credit card|bank account|social security|ssn)\b", re.I),
    re.compile(r"\b(hurt|attack|revenge|stalk|spy on|follow someone)\b", re.I),
]

CAUTION_PATTERNS = [
    re.compile(r"\b(money|cash|payment)\b", re.I),
    re.compile(r"\b(late night|midnight|3am|4am)\b", re.I),
    re.compile(r"\b(alone|nobody home|empty house)\b", re.I),
    re.compile(r"\b(keys?|spare key|lockout)\b", re.I),
]

HIGH_RISK_CATEGORIES = frozenset({"childcare", "medical"})


@dataclass(frozen=True)
class SafetyCheck:
    blocked: bool
    caution: bool
    flags: list[str] = field(default_factory=list)
    reason: str | None = None


def sanitize_text(value: str) -> str:
    """Strip control characters and script-injection markers."""
    value = _CONTROL_CHARS.sub("", value)
    value = _ANGLE_BRACKETS.sub("", value)
    value = _JS_SCHEME.sub("", value)
    value = _EVENT_HANDLER.sub("", value)
    return value.strip()


def check_content(text: str) -> SafetyCheck:
    for pattern in BLOCKED_PATTERNS:
        if pattern.search(text):
            return SafetyCheck(
                blocked=True,
                caution=False,
                flags=["blocked_content"],
                reason="This content contains prohibited terms and cannot be posted.",
            )
    flags = ["requires_caution" for pattern in CAUTION_PATTERNS if pattern.search(text)]
    return SafetyCheck(blocked=False, caution=bool(flags), flags=flags[:1])


def is_high_risk_category(category: str | None) -> bool:
    return category in HIGH_RISK_CATEGORIES
