"""Helpers mirroring ``meta.SetStatusCondition`` for condition lists."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .attributes import MAX_CONDITIONS
from .exceptions import ConditionLimitExceeded
from .model import Condition

Clock = Callable[[], str]


def utcnow() -> str:
    """Return the current time formatted as an RFC 3339 timestamp."""

    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find(conditions: Iterable[Condition], condition_type: str) -> Optional[Condition]:
    return next((c for c in conditions if c.type == condition_type), None)


def set_condition(
    conditions: Sequence[Condition],
    new: Condition,
    *,
    clock: Clock = utcnow,
    limit: Optional[int] = MAX_CONDITIONS,
) -> Tuple[Tuple[Condition, ...], bool]:
    """Insert or update ``new`` in ``conditions``.

    Returns the updated tuple and whether anything changed. The transition
    time is only bumped when the status flips; an existing entry keeps its
    position so the list stays stable between writes.
    """

    existing = find(conditions, new.type)
    if existing is None:
        if limit is not None and len(conditions) >= limit:
            raise ConditionLimitExceeded(
                f"cannot add condition {new.type!r}: {len(conditions)} conditions already present"
            )
        stamped = replace(new, last_transition_time=new.last_transition_time or clock())
        return (*conditions, stamped), True

    if existing.same_state(new):
        return tuple(conditions), False

    if existing.status != new.status:
        transition = new.last_transition_time or clock()
    else:
        transition = existing.last_transition_time or clock()
    updated = replace(new, last_transition_time=transition)
    return tuple(updated if c.type == new.type else c for c in conditions), True


def gating(conditions: Iterable[Condition], ignore: Iterable[str]) -> Tuple[Condition, ...]:
    """Return the conditions that participate in readiness."""

    skipped = set(ignore)
    return tuple(c for c in conditions if c.type not in skipped)
