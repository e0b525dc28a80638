"""
Task status transition table.

This is the single source of truth for which task status changes are legal.
It is used as an advisory pre-check by callers and, mandatorily, right before
every status write in tasks.transition_task.
"""
from typing import FrozenSet

from .exceptions import InvalidTransition
from .models import TaskStatus, normalize_task_status

VALID_TRANSITIONS = {
    TaskStatus.DRAFT: frozenset([TaskStatus.OPEN, TaskStatus.ARCHIVED]),
    TaskStatus.OPEN: frozenset([TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED]),
    TaskStatus.IN_PROGRESS: frozenset([TaskStatus.COMPLETED, TaskStatus.OPEN, TaskStatus.ARCHIVED]),
    TaskStatus.COMPLETED: frozenset([TaskStatus.VERIFIED, TaskStatus.REJECTED, TaskStatus.ARCHIVED]),
    TaskStatus.VERIFIED: frozenset([TaskStatus.ARCHIVED]),
    TaskStatus.REJECTED: frozenset([TaskStatus.OPEN, TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED]),
    TaskStatus.ARCHIVED: frozenset([TaskStatus.OPEN]),
}


def is_valid_transition(current: str, proposed: str) -> bool:
    """
    Check whether a task may move from `current` to `proposed`.

    Same-state is always valid. Unknown statuses are never valid.
    """
    try:
        current = normalize_task_status(current)
        proposed = normalize_task_status(proposed)
    except InvalidTransition:
        return False

    if current == proposed:
        return True
    return proposed in VALID_TRANSITIONS[current]


def assert_transition(current: str, proposed: str) -> None:
    """Raise InvalidTransition unless `current -> proposed` is allowed."""
    if not is_valid_transition(current, proposed):
        raise InvalidTransition(f"Cannot transition from {current} to {proposed}")


def allowed_transitions(current: str) -> FrozenSet[str]:
    """Statuses reachable from `current` in one step (excluding itself)."""
    return VALID_TRANSITIONS[normalize_task_status(current)]
