"""Trust tier derivation from verification events.

Pure functions only. The tier cached on a profile is an optimisation; these
functions are the source of truth and accept any snapshot of events,
including an empty or stale one.
"""

from __future__ import annotations

from collections.abc import Iterable

from swaami.db_models import TrustTier, VerificationEvent, VerificationType

# Each requirement is a group of interchangeable verification types; the first
# member is the representative reported as "missing".
PHONE = (VerificationType.phone_sms, VerificationType.phone_whatsapp)
SOCIAL = (VerificationType.social_google, VerificationType.social_apple)

TIER_REQUIREMENTS: dict[TrustTier, tuple[tuple[VerificationType, ...], ...]] = {
    TrustTier.tier_0: (),
    TrustTier.tier_1: (
        (VerificationType.email,),
        PHONE,
        SOCIAL,
    ),
    TrustTier.tier_2: (
        (VerificationType.email,),
        PHONE,
        SOCIAL,
        (VerificationType.photos_complete,),
        (VerificationType.endorsement,),
        (VerificationType.mfa_enabled,),
    ),
}

_TIER_ORDER = (TrustTier.tier_0, TrustTier.tier_1, TrustTier.tier_2)


def _types(events: Iterable[VerificationEvent | VerificationType | str]) -> set[VerificationType]:
    present: set[VerificationType] = set()
    for event in events:
        raw = event.verification_type if isinstance(event, VerificationEvent) else event
        try:
            present.add(VerificationType(raw))
        except ValueError:
            # Unknown types never contribute to a tier.
            continue
    return present


def _satisfied(present: set[VerificationType], tier: TrustTier) -> bool:
    return all(present.intersection(group) for group in TIER_REQUIREMENTS[tier])


def tier_of(events: Iterable[VerificationEvent | VerificationType | str]) -> TrustTier:
    present = _types(events)
    if _satisfied(present, TrustTier.tier_2):
        return TrustTier.tier_2
    if _satisfied(present, TrustTier.tier_1):
        return TrustTier.tier_1
    return TrustTier.tier_0


def missing_for_tier(
    events: Iterable[VerificationEvent | VerificationType | str],
    target: TrustTier | str,
) -> list[VerificationType]:
    """Verification types still needed to reach ``target``.

    OR-groups collapse to their representative, which is only reported when no
    member of the group is present.
    """
    present = _types(events)
    return [
        group[0]
        for group in TIER_REQUIREMENTS[TrustTier(target)]
        if not present.intersection(group)
    ]


def tier_rank(tier: TrustTier | str) -> int:
    return _TIER_ORDER.index(TrustTier(tier))


def tier_at_least(tier: TrustTier | str, minimum: TrustTier | str) -> bool:
    return tier_rank(tier) >= tier_rank(minimum)
