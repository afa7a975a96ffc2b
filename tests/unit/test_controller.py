from threading import Event

from podnet.client import MemoryCluster
from podnet.exceptions import ConflictError
from podnet.model import POD_NETWORK_TYPE, RESOURCE_CLAIM_TYPE, DeviceID, PodNetwork, ResourceClaim
from podnet_controller.config import ControllerConfig
from podnet_controller.controller import CLAIM_QUEUE, POD_NETWORK_QUEUE, Controller

import factories

BOUND = DeviceID(factories.DRIVER, "node-a", "eth1")


def build_controller(**overrides):
    cluster = MemoryCluster()
    controller = Controller(ControllerConfig(**overrides), cluster)
    cluster.attach(controller.registry)
    return cluster, controller


def ready_of(cluster, name):
    return PodNetwork.from_dict(cluster.get(POD_NETWORK_TYPE, name)).condition("Ready")


def claim_entry(cluster, name="attach", namespace="default"):
    return ResourceClaim.from_dict(cluster.get(RESOURCE_CLAIM_TYPE, name, namespace)).status_for(BOUND)


def test_pod_network_events_drive_readiness():
    cluster, controller = build_controller()
    cluster.apply(factories.pod_network("blue"))

    controller.drain()
    assert ready_of(cluster, "blue").status == "True"

    cluster.apply(factories.pod_network("blue", enabled=False))
    controller.drain()
    assert ready_of(cluster, "blue").reason == "AdministrativelyDisabled"
    assert cluster.status_writes == [("PodNetwork", "blue"), ("PodNetwork", "blue")]


def test_implementation_condition_updates_are_picked_up():
    cluster, controller = build_controller()
    cluster.apply(factories.pod_network("blue", conditions=[factories.condition("DataplaneReady", "False")]))
    controller.drain()
    assert ready_of(cluster, "blue").reason == "ConditionsNotReady"

    live = cluster.get(POD_NETWORK_TYPE, "blue")
    live["status"]["conditions"][0]["status"] = "True"
    cluster.replace_status(POD_NETWORK_TYPE, live)
    controller.drain()

    assert ready_of(cluster, "blue").status == "True"


def test_claims_are_projected_and_frozen_when_the_device_goes_away():
    cluster, controller = build_controller()
    cluster.apply(factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="blue")]))
    cluster.apply(factories.resource_claim("attach", "eth1"))

    controller.drain()
    assert claim_entry(cluster).data == {"podNetwork": "blue"}

    cluster.delete("resource.k8s.io/v1", "ResourceSlice", "slice-a")
    controller.drain()

    entry = claim_entry(cluster)
    assert entry.data == {"podNetwork": "blue"}
    assert entry.condition("NetworkResolved").reason == "DeviceNotFound"
    assert controller.queues[CLAIM_QUEUE].num_requeues("default/attach") > 0


def test_failed_claim_recovers_when_the_slice_appears():
    cluster, controller = build_controller()
    cluster.apply(factories.resource_claim("attach", "eth1"))

    controller.drain()
    queue = controller.queues[CLAIM_QUEUE]
    assert queue.num_requeues("default/attach") > 0
    assert claim_entry(cluster).condition("NetworkResolved").status == "False"

    cluster.apply(factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="blue")]))
    controller.drain()

    assert claim_entry(cluster).condition("NetworkResolved").status == "True"
    assert queue.num_requeues("default/attach") == 0


def test_new_classification_requeues_claims():
    cluster, controller = build_controller()
    cluster.apply(
        factories.resource_slice(
            "slice-a", [factories.device("eth1", podNetwork="blue", networkClass="ovn", podNetworkNamespace="a")]
        )
    )
    cluster.apply(factories.resource_claim("attach", "eth1"))
    controller.drain()
    assert claim_entry(cluster).condition("NetworkResolved").reason == "ClassificationNotFound"

    cluster.apply(factories.crd("k8s.ovn.org", "UserDefinedNetwork", "userdefinednetworks", namespaced=True))
    cluster.apply(factories.network_class("ovn", "k8s.ovn.org", "v1", "UserDefinedNetwork"))
    controller.drain()

    entry = claim_entry(cluster)
    assert entry.condition("NetworkResolved").status == "True"
    assert entry.data == {"podNetwork": "blue", "networkClass": "ovn", "podNetworkNamespace": "a"}


def test_resync_requeues_everything():
    cluster, controller = build_controller()
    cluster.apply(factories.pod_network("blue"))
    controller.drain()

    controller.resync()

    assert len(controller.queues[POD_NETWORK_QUEUE]) == 1
    assert controller.drain() == 1
    assert cluster.status_writes == [("PodNetwork", "blue")]


def test_worker_threads_process_and_stop():
    cluster, controller = build_controller(workers=1)
    stop_event = Event()
    controller.start(stop_event)
    try:
        cluster.apply(factories.pod_network("blue"))
        for _ in range(100):
            if cluster.status_writes:
                break
            stop_event.wait(0.02)
        assert cluster.status_writes == [("PodNetwork", "blue")]
    finally:
        controller.stop()
        controller.join(timeout=2)
    assert stop_event.is_set()


def test_deleting_a_crd_requeues_claims():
    cluster, controller = build_controller()
    cluster.apply(factories.crd("k8s.ovn.org", "ClusterUserDefinedNetwork", "clusteruserdefinednetworks",
                                namespaced=False))
    cluster.apply(factories.network_class("cluster-ovn", "k8s.ovn.org", "v1", "ClusterUserDefinedNetwork"))
    cluster.apply(
        factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="blue", networkClass="cluster-ovn")])
    )
    cluster.apply(factories.resource_claim("attach", "eth1"))
    controller.drain()
    assert claim_entry(cluster).condition("NetworkResolved").status == "True"

    cluster.delete("apiextensions.k8s.io/v1", "CustomResourceDefinition", "clusteruserdefinednetworks.k8s.ovn.org")

    assert len(controller.queues[CLAIM_QUEUE]) == 1
    controller.drain()
    resolved = claim_entry(cluster).condition("NetworkResolved")
    assert (resolved.status, resolved.reason) == ("False", "KindScopeUnknown")


def test_persistent_failure_without_room_for_ready_records_an_event():
    cluster, controller = build_controller(failure_threshold=1)
    conditions = [factories.condition(f"Step{i}", "True") for i in range(5)]
    cluster.apply(factories.pod_network("blue", conditions=conditions))

    controller.drain()

    assert cluster.status_writes == []
    assert len(cluster.events) == 1
    event = cluster.events[0]
    assert event["involvedObject"]["kind"] == "PodNetwork"
    assert event["involvedObject"]["name"] == "blue"
    assert (event["type"], event["reason"]) == ("Warning", "ReconcileFailed")
    assert "5 conditions already present" in event["message"]


class ConflictingCluster(MemoryCluster):
    """Reject the first status write as stale."""

    conflicts = 1

    def replace_status(self, resource, obj):
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("stale")
        return super().replace_status(resource, obj)


def test_exhausted_conflicts_mark_ready_unknown_until_a_pass_succeeds():
    cluster = ConflictingCluster()
    controller = Controller(ControllerConfig(conflict_retries=0, failure_threshold=1), cluster)
    cluster.attach(controller.registry)
    cluster.apply(factories.pod_network("blue"))

    assert controller.process_next(POD_NETWORK_QUEUE, timeout=0)

    ready = ready_of(cluster, "blue")
    assert (ready.status, ready.reason) == ("Unknown", "ReconcileFailed")
    assert [e["reason"] for e in cluster.events] == ["ReconcileFailed"]

    controller.drain()
    ready = ready_of(cluster, "blue")
    assert (ready.status, ready.reason) == ("True", "Ready")
    assert controller.queues[POD_NETWORK_QUEUE].num_requeues("blue") == 0
