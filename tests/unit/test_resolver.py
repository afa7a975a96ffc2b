import pytest

from podnet.events import KindScopeUpsert, ObjectUpsert
from podnet.exceptions import (
    AmbiguousDevice,
    AttributeMissing,
    ClassificationNotFound,
    DeviceNotFound,
    KindScopeUnknown,
    NamespaceRequired,
)
from podnet.model import DeviceID, GroupVersionKind
from podnet.resolver import DeviceResolver, Resolution
from podnet.store import NetworkStore

import factories

UDN = GroupVersionKind("k8s.ovn.org", "v1", "UserDefinedNetwork")
CUDN = GroupVersionKind("k8s.ovn.org", "v1", "ClusterUserDefinedNetwork")


def build_store(*objects, scopes=None) -> NetworkStore:
    store = NetworkStore()
    for gvk, namespaced in (scopes or {}).items():
        store.on_kind_scope(KindScopeUpsert(gvk, namespaced))
    for obj in objects:
        store.on_upsert(ObjectUpsert(obj))
    return store


def device_id(name: str, pool: str = "node-a") -> DeviceID:
    return DeviceID(factories.DRIVER, pool, name)


def test_namespaced_kind_without_namespace_attribute_fails():
    store = build_store(
        factories.network_class("ovn-kubernetes", "k8s.ovn.org", "v1", "UserDefinedNetwork"),
        factories.resource_slice(
            "slice-a",
            [factories.device("eth1", podNetwork="blue-network", networkClass="ovn-kubernetes")],
        ),
        scopes={UDN: True},
    )

    with pytest.raises(NamespaceRequired) as excinfo:
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))
    assert excinfo.value.reason == "NamespaceRequired"


def test_namespaced_kind_resolves_with_namespace():
    store = build_store(
        factories.network_class("ovn-kubernetes", "k8s.ovn.org", "v1", "UserDefinedNetwork"),
        factories.resource_slice(
            "slice-a",
            [
                factories.device(
                    "eth1",
                    podNetwork="blue-network",
                    networkClass="ovn-kubernetes",
                    podNetworkNamespace="team-a",
                )
            ],
        ),
        scopes={UDN: True},
    )

    resolution = DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))

    assert resolution == Resolution("blue-network", "ovn-kubernetes", "team-a")
    assert str(resolution) == "team-a/blue-network (ovn-kubernetes)"


def test_cluster_scoped_kind_accepts_missing_namespace():
    store = build_store(
        factories.crd("k8s.ovn.org", "ClusterUserDefinedNetwork", "clusteruserdefinednetworks", namespaced=False),
        factories.network_class("ovn-cluster", "k8s.ovn.org", "v1", "ClusterUserDefinedNetwork"),
        factories.resource_slice(
            "slice-a", [factories.device("eth1", podNetwork="red", networkClass="ovn-cluster")]
        ),
    )

    resolution = DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))

    assert resolution == Resolution("red", "ovn-cluster", None)


def test_namespace_attribute_ignored_for_cluster_scoped_kind():
    store = build_store(
        factories.network_class("ovn-cluster", "k8s.ovn.org", "v1", "ClusterUserDefinedNetwork"),
        factories.resource_slice(
            "slice-a",
            [factories.device("eth1", podNetwork="red", networkClass="ovn-cluster", podNetworkNamespace="x")],
        ),
        scopes={CUDN: False},
    )

    assert DeviceResolver().resolve_in(store.snapshot(), device_id("eth1")).namespace is None


def test_identity_record_without_classification():
    store = build_store(
        factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="net-dataplane")]),
    )

    assert DeviceResolver().resolve_in(store.snapshot(), device_id("eth1")) == Resolution("net-dataplane")


def test_missing_pod_network_attribute():
    store = build_store(factories.resource_slice("slice-a", [factories.device("eth1")]))

    with pytest.raises(AttributeMissing):
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))


def test_unknown_device_and_unknown_pool():
    store = build_store(factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="x")]))
    resolver = DeviceResolver()

    with pytest.raises(DeviceNotFound):
        resolver.resolve_in(store.snapshot(), device_id("eth9"))
    with pytest.raises(DeviceNotFound):
        resolver.resolve_in(store.snapshot(), device_id("eth1", pool="node-z"))


def test_only_newest_pool_generation_counts():
    store = build_store(
        factories.resource_slice("old", [factories.device("eth1", podNetwork="stale")], generation=1),
        factories.resource_slice("new", [factories.device("eth1", podNetwork="fresh")], generation=2),
    )

    assert DeviceResolver().resolve_in(store.snapshot(), device_id("eth1")).pod_network == "fresh"


def test_duplicate_device_in_current_generation_is_ambiguous():
    store = build_store(
        factories.resource_slice("a", [factories.device("eth1", podNetwork="x")]),
        factories.resource_slice("b", [factories.device("eth1", podNetwork="y")]),
    )

    with pytest.raises(AmbiguousDevice):
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))


def test_unknown_classification():
    store = build_store(
        factories.resource_slice("a", [factories.device("eth1", podNetwork="x", networkClass="missing")]),
    )

    with pytest.raises(ClassificationNotFound):
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))


def test_unknown_kind_scope():
    store = build_store(
        factories.network_class("ovn-kubernetes", "k8s.ovn.org", "v1", "UserDefinedNetwork"),
        factories.resource_slice(
            "a", [factories.device("eth1", podNetwork="x", networkClass="ovn-kubernetes")]
        ),
    )

    with pytest.raises(KindScopeUnknown):
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))


def test_custom_attribute_domain():
    entry = {
        "name": "eth1",
        "attributes": {"example.com/podNetwork": {"string": "green"}},
    }
    store = build_store(factories.resource_slice("a", [entry]))

    assert DeviceResolver("example.com").resolve_in(store.snapshot(), device_id("eth1")).pod_network == "green"
    with pytest.raises(AttributeMissing):
        DeviceResolver().resolve_in(store.snapshot(), device_id("eth1"))


def test_resolution_data_round_trip():
    resolution = Resolution("blue-network", "ovn-kubernetes", "team-a")

    assert Resolution.from_data(resolution.as_data()) == resolution
    assert Resolution.from_data({}) is None
