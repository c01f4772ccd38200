"""Status transition tables for tasks and matches.

Every mutation site goes through ``transition``; nothing else encodes which
status may follow which.
"""

from __future__ import annotations

from swaami.db_models import MatchStatus, TaskStatus
from swaami.errors import InvalidTransition

TASK_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    TaskStatus.open.value: frozenset({TaskStatus.matched.value, TaskStatus.cancelled.value}),
    TaskStatus.matched.value: frozenset(
        {TaskStatus.in_progress.value, TaskStatus.cancelled.value}
    ),
    TaskStatus.in_progress.value: frozenset(
        {TaskStatus.completed.value, TaskStatus.cancelled.value}
    ),
    TaskStatus.completed.value: frozenset(),
    TaskStatus.cancelled.value: frozenset(),
}

MATCH_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    MatchStatus.pending.value: frozenset({MatchStatus.accepted.value, MatchStatus.cancelled.value}),
    MatchStatus.accepted.value: frozenset({MatchStatus.arrived.value, MatchStatus.cancelled.value}),
    MatchStatus.arrived.value: frozenset(
        {MatchStatus.completed.value, MatchStatus.cancelled.value}
    ),
    MatchStatus.completed.value: frozenset(),
    MatchStatus.cancelled.value: frozenset(),
}

_TABLES = {"task": TASK_STATUS_TRANSITIONS, "match": MATCH_STATUS_TRANSITIONS}

# Task statuses in which a helper is assigned.
HELPER_ASSIGNED = frozenset(
    {TaskStatus.matched.value, TaskStatus.in_progress.value, TaskStatus.completed.value}
)


def _value(status) -> str:
    return status.value if isinstance(status, TaskStatus | MatchStatus) else str(status)


def validate_transition(current, target, table: dict[str, frozenset[str]]) -> bool:
    allowed = table.get(_value(current))
    if allowed is None:
        return False
    return _value(target) in allowed


def is_terminal(status, table: dict[str, frozenset[str]]) -> bool:
    return _value(status) in table and not table[_value(status)]


def transition(entity: str, current, target) -> str:
    """Return ``target`` as a status value, or raise InvalidTransition."""
    table = _TABLES[entity]
    if not validate_transition(current, target, table):
        raise InvalidTransition(entity, _value(current), _value(target))
    return _value(target)


def task_transition(current, target) -> str:
    return transition("task", current, target)


def match_transition(current, target) -> str:
    return transition("match", current, target)


def helper_consistent(status, helper_id: str | None) -> bool:
    """helper is set if and only if the task is matched, in progress or completed."""
    return (helper_id is not None) == (_value(status) in HELPER_ASSIGNED)
