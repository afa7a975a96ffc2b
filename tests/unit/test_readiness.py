import pytest

from podnet.client import MemoryCluster
from podnet.exceptions import ConditionLimitExceeded, ConflictError
from podnet.model import POD_NETWORK_TYPE, PodNetwork
from podnet.readiness import NetworkState, ReadinessReconciler, assess
from podnet.registry import HandlerRegistry
from podnet.store import NetworkStore

import factories


def clock():
    return "2025-06-01T00:00:00Z"


def build_cluster(cluster_cls=MemoryCluster):
    store = NetworkStore()
    registry = HandlerRegistry()
    registry.register("store", store)
    return cluster_cls(registry), store


class FlakyCluster(MemoryCluster):
    """Reject the first ``conflicts`` status writes as stale."""

    conflicts = 1

    def replace_status(self, resource, obj):
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("stale")
        return super().replace_status(resource, obj)


def ready_of(cluster, name):
    return PodNetwork.from_dict(cluster.get(POD_NETWORK_TYPE, name)).condition("Ready")


def test_enabled_network_without_conditions_becomes_ready():
    cluster, store = build_cluster()
    cluster.apply(factories.pod_network("net-dataplane", provider="foo.io/bar"))

    state = ReadinessReconciler(cluster, clock=clock).reconcile("net-dataplane", store.snapshot())

    assert state is NetworkState.READY
    ready = ready_of(cluster, "net-dataplane")
    assert (ready.status, ready.reason) == ("True", "Ready")
    assert ready.observed_generation == 1


def test_disabling_a_network():
    cluster, store = build_cluster()
    reconciler = ReadinessReconciler(cluster, clock=clock)
    cluster.apply(factories.pod_network("dataplane"))
    reconciler.reconcile("dataplane", store.snapshot())

    cluster.apply(factories.pod_network("dataplane", enabled=False))
    state = reconciler.reconcile("dataplane", store.snapshot())

    assert state is NetworkState.DISABLED
    ready = ready_of(cluster, "dataplane")
    assert (ready.status, ready.reason) == ("False", "AdministrativelyDisabled")
    assert ready.observed_generation == 2


def test_disabled_wins_over_healthy_conditions():
    network = PodNetwork.from_dict(
        factories.pod_network("x", enabled=False, conditions=[factories.condition("DataplaneReady", "True")])
    )

    assert assess(network).reason == "AdministrativelyDisabled"


@pytest.mark.parametrize(
    "status,expected_status,expected_reason",
    [
        ("False", "False", "ConditionsNotReady"),
        ("Unknown", "Unknown", "Pending"),
        ("True", "True", "Ready"),
    ],
)
def test_gating_conditions(status, expected_status, expected_reason):
    network = PodNetwork.from_dict(
        factories.pod_network("x", conditions=[factories.condition("DataplaneReady", status)])
    )

    assessment = assess(network)

    assert (assessment.status, assessment.reason) == (expected_status, expected_reason)


def test_in_use_refines_ready_without_gating():
    network = PodNetwork.from_dict(
        factories.pod_network(
            "x",
            conditions=[
                factories.condition("Ready", "False", "ConditionsNotReady"),
                factories.condition("InUse", "True"),
            ],
        )
    )

    assessment = assess(network)

    assert assessment.state is NetworkState.IN_USE
    assert assessment.status == "True"


def test_second_pass_does_not_write():
    cluster, store = build_cluster()
    reconciler = ReadinessReconciler(cluster, clock=clock)
    cluster.apply(factories.pod_network("blue"))

    reconciler.reconcile("blue", store.snapshot())
    assert cluster.status_writes == [("PodNetwork", "blue")]

    reconciler.reconcile("blue", store.snapshot())
    assert cluster.status_writes == [("PodNetwork", "blue")]


def test_implementation_conditions_are_preserved():
    cluster, store = build_cluster()
    cluster.apply(
        factories.pod_network("blue", conditions=[factories.condition("DataplaneReady", "True")])
    )

    ReadinessReconciler(cluster, clock=clock).reconcile("blue", store.snapshot())

    network = PodNetwork.from_dict(cluster.get(POD_NETWORK_TYPE, "blue"))
    assert [c.type for c in network.conditions] == ["DataplaneReady", "Ready"]
    assert network.condition("DataplaneReady").last_transition_time == "2025-01-01T00:00:00Z"


def test_conflict_is_retried_against_fresh_copy():
    cluster, store = build_cluster(FlakyCluster)
    cluster.apply(factories.pod_network("blue"))

    state = ReadinessReconciler(cluster, clock=clock).reconcile("blue", store.snapshot())

    assert state is NetworkState.READY
    assert cluster.status_writes == [("PodNetwork", "blue")]


def test_persistent_conflict_gives_up():
    cluster, store = build_cluster(FlakyCluster)
    cluster.conflicts = 10
    cluster.apply(factories.pod_network("blue"))

    with pytest.raises(ConflictError):
        ReadinessReconciler(cluster, conflict_retries=2, clock=clock).reconcile("blue", store.snapshot())


def test_deleted_network_is_ignored():
    cluster, store = build_cluster()

    assert ReadinessReconciler(cluster).reconcile("gone", store.snapshot()) is None
    assert cluster.status_writes == []


def test_full_condition_list_blocks_ready():
    cluster, store = build_cluster()
    conditions = [factories.condition(f"Check{i}", "True") for i in range(5)]
    cluster.apply(factories.pod_network("crowded", conditions=conditions))

    with pytest.raises(ConditionLimitExceeded):
        ReadinessReconciler(cluster, clock=clock).reconcile("crowded", store.snapshot())
    assert cluster.status_writes == []


def test_report_failure_marks_ready_unknown_once():
    cluster, _ = build_cluster()
    cluster.apply(factories.pod_network("blue"))
    reconciler = ReadinessReconciler(cluster, clock=clock)

    assert reconciler.report_failure("blue", "reconciliation keeps failing: stale") is True
    assert reconciler.report_failure("blue", "reconciliation keeps failing: stale") is True

    ready = ready_of(cluster, "blue")
    assert (ready.status, ready.reason) == ("Unknown", "ReconcileFailed")
    assert cluster.status_writes == [("PodNetwork", "blue")]


def test_report_failure_leaves_a_full_condition_list_alone():
    cluster, _ = build_cluster()
    conditions = [factories.condition(f"Step{i}", "True") for i in range(5)]
    cluster.apply(factories.pod_network("blue", conditions=conditions))

    assert ReadinessReconciler(cluster, clock=clock).report_failure("blue", "boom") is False
    assert cluster.status_writes == []
    assert ReadinessReconciler(cluster, clock=clock).report_failure("gone", "boom") is False
