from podnet.conformance import (
    CHECK_ADVERTISEMENT,
    CHECK_ALLOCATION,
    CHECK_PROJECTION,
    CHECK_READINESS,
    CHECK_RESOLUTION,
    CHECK_SELECTION,
    ConformanceChecker,
)
from podnet.model import GroupVersionKind
from podnet.store import snapshot_from_objects

import factories

UDN = GroupVersionKind("k8s.ovn.org", "v1", "UserDefinedNetwork")
SELECTOR = 'device.attributes["networking.k8s.io"].podNetwork == "blue-network"'


def healthy_objects():
    return [
        factories.pod_network("blue-network", conditions=[factories.condition("Ready", "True", "Ready")]),
        factories.network_class("ovn-kubernetes", "k8s.ovn.org", "v1", "UserDefinedNetwork"),
        factories.network_object("k8s.ovn.org/v1", "UserDefinedNetwork", "blue-network", "team-a"),
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
        factories.resource_claim(
            "attach",
            "eth1",
            namespace="team-a",
            selectors=[SELECTOR],
            status_devices=[
                {
                    "driver": factories.DRIVER,
                    "pool": "node-a",
                    "device": "eth1",
                    "data": {
                        "podNetwork": "blue-network",
                        "networkClass": "ovn-kubernetes",
                        "podNetworkNamespace": "team-a",
                    },
                }
            ],
        ),
    ]


def test_healthy_cluster_passes():
    report = ConformanceChecker().check(snapshot_from_objects(healthy_objects(), {UDN: True}))

    assert report.passed, [str(f) for f in report.findings]
    assert report.checked[CHECK_SELECTION] == 1
    assert "passed" in report.summary()


def test_stale_ready_condition_is_reported():
    objects = healthy_objects()
    objects[0] = factories.pod_network("blue-network", enabled=False,
                                       conditions=[factories.condition("Ready", "True", "Ready")])

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    assert [f.subject for f in report.by_check(CHECK_READINESS)] == ["PodNetwork/blue-network"]


def test_unadvertised_network_object_is_reported():
    objects = healthy_objects()
    objects.append(factories.network_object("k8s.ovn.org/v1", "UserDefinedNetwork", "red", "team-a"))

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    findings = report.by_check(CHECK_ADVERTISEMENT)
    assert len(findings) == 1
    assert "team-a/red" in findings[0].message


def test_unknown_scope_is_reported():
    report = ConformanceChecker().check(snapshot_from_objects(healthy_objects()))

    assert report.by_check(CHECK_ADVERTISEMENT)
    assert report.by_check(CHECK_RESOLUTION)


def test_missing_projection_is_reported():
    objects = healthy_objects()
    del objects[-1]["status"]["devices"]

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    assert [f.message for f in report.by_check(CHECK_PROJECTION)] == ["status carries no resolved network"]


def test_selector_mismatch_is_reported():
    objects = healthy_objects()
    objects[-1]["spec"]["devices"]["requests"][0]["exactly"]["selectors"] = [
        {"cel": {"expression": 'device.attributes["networking.k8s.io"].podNetwork == "red"'}}
    ]

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    assert len(report.by_check(CHECK_SELECTION)) == 1


def test_unallocated_selecting_claim_is_reported():
    objects = [
        factories.resource_slice("slice-a", [factories.device("eth1", podNetwork="red")]),
        factories.resource_claim("attach", namespace="team-a", selectors=[SELECTOR]),
    ]

    report = ConformanceChecker().check(snapshot_from_objects(objects))

    assert not report.passed
    assert [f.message for f in report.by_check(CHECK_ALLOCATION)] == [
        "no advertised device satisfies its network selectors"
    ]
    assert report.checked[CHECK_ALLOCATION] == 1


def test_unallocated_claim_with_a_matching_device_is_reported():
    objects = healthy_objects()
    objects[-1] = factories.resource_claim("attach", namespace="team-a", selectors=[SELECTOR])

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    findings = report.by_check(CHECK_ALLOCATION)
    assert len(findings) == 1
    assert findings[0].subject == "ResourceClaim/team-a/attach[net]"
    assert "dra.example.com/node-a/eth1" in findings[0].message


def test_claim_without_network_selectors_needs_no_allocation():
    objects = [factories.resource_claim("gpu", selectors=['device.driver == "gpu.example.com"'])]

    report = ConformanceChecker().check(snapshot_from_objects(objects))

    assert report.passed
    assert CHECK_ALLOCATION not in report.checked


def test_opaque_status_data_counts_as_missing_projection():
    objects = healthy_objects()
    objects[-1]["status"]["devices"][0]["data"] = "vendor-blob"

    report = ConformanceChecker().check(snapshot_from_objects(objects, {UDN: True}))

    assert [f.message for f in report.by_check(CHECK_PROJECTION)] == ["status carries no resolved network"]
