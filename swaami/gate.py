"""TrustGate: the single authorization point for tier-gated actions."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from swaami.db_models import TrustTier, VerificationEvent
from swaami.errors import AuthorizationError
from swaami.trust import missing_for_tier, tier_at_least

logger = logging.getLogger("swaami.gate")


class Action(str, enum.Enum):
    browse = "browse"
    post_task = "post_task"
    send_message = "send_message"
    endorse = "endorse"
    claim_task = "claim_task"
    mark_arrived = "mark_arrived"
    complete_match = "complete_match"


MIN_TIER: dict[Action, TrustTier] = {
    Action.browse: TrustTier.tier_0,
    Action.post_task: TrustTier.tier_1,
    Action.send_message: TrustTier.tier_1,
    Action.endorse: TrustTier.tier_1,
    # Accepting a claimed task and reporting arrival are part of helping.
    Action.claim_task: TrustTier.tier_2,
    Action.mark_arrived: TrustTier.tier_2,
    Action.complete_match: TrustTier.tier_2,
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    action: Action
    tier: TrustTier
    required_tier: TrustTier
    reason: str | None = None


def authorize(action: Action | str, tier: TrustTier | str) -> Decision:
    action = Action(action)
    tier = TrustTier(tier)
    required = MIN_TIER[action]
    if tier_at_least(tier, required):
        return Decision(True, action, tier, required)
    return Decision(
        False,
        action,
        tier,
        required,
        reason=f"{action.value} requires {required.value}, caller is {tier.value}",
    )


def allowed_actions(tier: TrustTier | str) -> list[Action]:
    return [action for action in Action if authorize(action, tier).allowed]


def require(
    action: Action | str,
    tier: TrustTier | str,
    events: Iterable[VerificationEvent] = (),
) -> Decision:
    """Raise AuthorizationError unless ``tier`` permits ``action``.

    ``events`` only feed the "missing verifications" hint on denial.
    """
    decision = authorize(action, tier)
    if decision.allowed:
        return decision
    missing = [t.value for t in missing_for_tier(events, decision.required_tier)]
    logger.info("Denied %s: %s (missing %s)", decision.action.value, decision.reason, missing)
    raise AuthorizationError(
        decision.action.value,
        decision.tier.value,
        decision.required_tier.value,
        missing=missing,
    )
