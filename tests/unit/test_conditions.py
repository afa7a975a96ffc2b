import pytest

from podnet.conditions import gating, set_condition
from podnet.exceptions import ConditionLimitExceeded
from podnet.model import Condition


def clock():
    return "2025-06-01T00:00:00Z"


def test_set_condition_appends_new_entry_with_timestamp():
    conditions, changed = set_condition((), Condition("Ready", "Unknown", "Pending"), clock=clock)

    assert changed is True
    assert conditions[0].last_transition_time == "2025-06-01T00:00:00Z"


def test_unchanged_condition_is_not_rewritten():
    existing = (Condition("Ready", "True", "Ready", "ok", "2025-01-01T00:00:00Z"),)

    conditions, changed = set_condition(existing, Condition("Ready", "True", "Ready", "ok"), clock=clock)

    assert changed is False
    assert conditions == existing


def test_transition_time_only_moves_on_status_flip():
    existing = (
        Condition("DataplaneReady", "True", "Up", "", "2025-01-01T00:00:00Z"),
        Condition("Ready", "Unknown", "Pending", "", "2025-01-01T00:00:00Z"),
    )

    reworded, _ = set_condition(existing, Condition("Ready", "Unknown", "Pending", "still waiting"), clock=clock)
    assert reworded[1].last_transition_time == "2025-01-01T00:00:00Z"
    assert reworded[0] == existing[0]

    flipped, _ = set_condition(existing, Condition("Ready", "True", "Ready"), clock=clock)
    assert flipped[1].last_transition_time == "2025-06-01T00:00:00Z"
    assert [c.type for c in flipped] == ["DataplaneReady", "Ready"]


def test_limit_blocks_new_condition_types():
    existing = tuple(Condition(f"C{i}", "True") for i in range(5))

    with pytest.raises(ConditionLimitExceeded):
        set_condition(existing, Condition("Ready", "True"), clock=clock)

    # Updating an existing type is still allowed at the limit.
    updated, changed = set_condition(existing, Condition("C0", "False"), clock=clock)
    assert changed and updated[0].status == "False"


def test_gating_skips_ignored_types():
    conditions = (Condition("Ready", "False"), Condition("InUse", "True"), Condition("Dataplane", "True"))

    assert [c.type for c in gating(conditions, {"Ready", "InUse"})] == ["Dataplane"]
