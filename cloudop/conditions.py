"""Maintenance of a resource's condition list."""

from __future__ import annotations

from datetime import datetime, timezone

from cloudop.model import Condition, ConditionStatus


def update_conditions(
    conditions: list[Condition],
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
) -> list[Condition]:
    """Set or add the condition of the given type and return the list.

    An existing condition changes only when its status or reason differs;
    the list is modified in place.
    """
    now = datetime.now(timezone.utc)
    for condition in conditions:
        if condition.type == condition_type:
            if condition.status != status or condition.reason != reason:
                condition.status = status
                condition.reason = reason
                condition.message = message
                condition.last_transition_time = now
            return conditions
    conditions.append(
        Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=now,
        )
    )
    return conditions