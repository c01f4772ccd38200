"""Error taxonomy shared by the services, the API layer and the client.

Every error carries a stable ``code`` (machine readable, also sent over the
wire) and a ``user_message`` that is safe to show to an end user. ``str(exc)``
is the developer-facing detail and may contain internals; it is logged, never
rendered.
"""

from __future__ import annotations


class SwaamiError(Exception):
    code = "error"
    status_code = 500
    user_message = "Something went wrong"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message

    def payload(self) -> dict:
        return {"error": self.user_message, "code": self.code}


class ValidationError(SwaamiError):
    code = "invalid_input"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        # Validation messages describe the caller's own input, so they are shown as-is.
        self.user_message = detail


class AuthorizationError(SwaamiError):
    code = "verification_required"
    status_code = 403
    user_message = "Verify your account to do this"

    def __init__(
        self,
        action: str,
        tier: str,
        required_tier: str,
        missing: list[str] | None = None,
    ):
        super().__init__(f"Action {action!r} requires {required_tier}, caller is {tier}")
        self.action = action
        self.tier = tier
        self.required_tier = required_tier
        self.missing = missing or []

    def payload(self) -> dict:
        return {
            **super().payload(),
            "action": self.action,
            "tier": self.tier,
            "required_tier": self.required_tier,
            "missing": self.missing,
        }


class ForbiddenError(SwaamiError):
    """Caller is not a party to the entity (not a trust-tier problem)."""

    code = "forbidden"
    status_code = 403
    user_message = "You can't do that"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.user_message = detail


class NotFoundError(SwaamiError):
    code = "not_found"
    status_code = 404
    user_message = "Not found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.user_message = f"{entity.capitalize()} not found"


class StateConflictError(SwaamiError):
    code = "state_conflict"
    status_code = 409
    user_message = "This can't be done right now"


class InvalidTransition(StateConflictError):
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Invalid {entity} status transition: {current} -> {target}")
        self.entity = entity
        self.current = current
        self.target = target
        self.user_message = f"This {entity} is {current} and can't become {target}"

    def payload(self) -> dict:
        return {
            **super().payload(),
            "entity": self.entity,
            "current": self.current,
            "target": self.target,
        }


class TaskUnavailable(StateConflictError):
    """The task cannot be claimed: gone, cancelled or past the open state."""

    code = "task_unavailable"
    user_message = "This task is no longer available"
    outcome = "unavailable"

    def __init__(self, task_id: str, reason: str = "not open"):
        super().__init__(f"Task {task_id} unavailable: {reason}")
        self.task_id = task_id

    def payload(self) -> dict:
        return {**super().payload(), "task_id": self.task_id, "outcome": self.outcome}


class AlreadyMatched(TaskUnavailable):
    """Someone else claimed the task first. A final answer, never retried."""

    code = "already_matched"

    def __init__(self, task_id: str):
        super().__init__(task_id, "already matched")


class TaskNotFound(TaskUnavailable):
    code = "task_not_found"

    def __init__(self, task_id: str):
        super().__init__(task_id, "not found")


class OwnTaskClaim(TaskUnavailable):
    code = "own_task"
    user_message = "You can't help with your own request"

    def __init__(self, task_id: str):
        super().__init__(task_id, "owner cannot claim own task")


class TransientStoreError(SwaamiError):
    code = "temporarily_unavailable"
    status_code = 503
    user_message = "Something went wrong, please try again"

    def payload(self) -> dict:
        return {**super().payload(), "retryable": True}


class FatalStoreError(SwaamiError):
    code = "internal_error"
    status_code = 500
    user_message = "Something went wrong"

    def __init__(self, detail: str | None = None, reference: str | None = None):
        super().__init__(detail)
        self.reference = reference

    def payload(self) -> dict:
        data = super().payload()
        if self.reference:
            data["reference"] = self.reference
        return data
