"""Conformance checks for implementations advertising pod networks.

The checker inspects a store snapshot (live or replayed from a recorded
state) and reports every place where an implementation deviates from the
contract:

* each PodNetwork's ``Ready`` condition matches what the readiness state
  machine derives from it;
* for each NetworkClass, every network object of the target kind is
  advertised by at least one device whose attributes carry the object's
  name (and namespace for namespaced kinds);
* every device tagged with ``podNetwork`` resolves;
* every allocated claim is bound to a device that satisfies the claim's
  network selectors, resolves, and carries the projected reference;
* every request selecting on a standardized attribute got a device.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from . import attributes as attrs
from .exceptions import ResolutionError, SelectorError
from .model import Device, DeviceRequest, NetworkClass, ResourceClaim
from .readiness import assess
from .resolver import DeviceResolver, Resolution, current_generation
from .selectors import Selector, compile_selector
from .store import Snapshot

LOG = logging.getLogger(__name__)

CHECK_READINESS = "readiness"
CHECK_ADVERTISEMENT = "advertisement"
CHECK_RESOLUTION = "resolution"
CHECK_SELECTION = "selection"
CHECK_PROJECTION = "projection"
CHECK_ALLOCATION = "allocation"


def _satisfies(selector: Selector, driver: str, device: Device) -> bool:
    try:
        return selector.matches(driver, device)
    except SelectorError:
        return False


@dataclass(frozen=True)
class Finding:
    check: str
    subject: str
    message: str

    def __str__(self) -> str:
        return f"[{self.check}] {self.subject}: {self.message}"


@dataclass
class ConformanceReport:
    findings: List[Finding] = field(default_factory=list)
    checked: Dict[str, int] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.findings

    def add(self, check: str, subject: str, message: str) -> None:
        finding = Finding(check, subject, message)
        LOG.debug("conformance finding %s", finding)
        self.findings.append(finding)

    def count(self, check: str) -> None:
        self.checked[check] = self.checked.get(check, 0) + 1

    def by_check(self, check: str) -> List[Finding]:
        return [f for f in self.findings if f.check == check]

    def summary(self) -> str:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(self.checked.items()))
        state = "passed" if self.passed else f"failed with {len(self.findings)} finding(s)"
        return f"conformance {state} ({counts})"


class ConformanceChecker:
    """Run every conformance check against a :class:`Snapshot`."""

    def __init__(self, resolver: DeviceResolver | None = None, drivers: Iterable[str] = ()) -> None:
        self._resolver = resolver or DeviceResolver()
        self._drivers: FrozenSet[str] = frozenset(drivers)

    def check(self, snapshot: Snapshot) -> ConformanceReport:
        report = ConformanceReport()
        self.check_readiness(snapshot, report)
        for network_class in sorted(snapshot.network_classes.values(), key=lambda c: c.name):
            self.check_advertisement(snapshot, network_class, report)
        self.check_devices(snapshot, report)
        for key in sorted(snapshot.claims):
            self.check_claim(snapshot, snapshot.claims[key], report)
        LOG.info(report.summary())
        return report

    # ------------------------------------------------------------------
    def check_readiness(self, snapshot: Snapshot, report: ConformanceReport) -> None:
        for name in sorted(snapshot.pod_networks):
            network = snapshot.pod_networks[name]
            report.count(CHECK_READINESS)
            expected = assess(network)
            ready = network.condition(attrs.CONDITION_READY)
            if ready is None:
                report.add(CHECK_READINESS, f"PodNetwork/{name}", "missing Ready condition")
            elif (ready.status, ready.reason) != (expected.status, expected.reason):
                report.add(
                    CHECK_READINESS,
                    f"PodNetwork/{name}",
                    f"Ready={ready.status}/{ready.reason}, expected "
                    f"{expected.status}/{expected.reason}",
                )

    def check_advertisement(
        self, snapshot: Snapshot, network_class: NetworkClass, report: ConformanceReport
    ) -> None:
        subject = f"NetworkClass/{network_class.name}"
        namespaced = snapshot.namespaced(network_class.target)
        if namespaced is None:
            report.add(CHECK_ADVERTISEMENT, subject, f"scope of {network_class.target} is unknown")
            return

        advertised = set()
        for resource_slice in self._current_slices(snapshot):
            for device in resource_slice.devices:
                if self._resolver.attribute(device, attrs.NETWORK_CLASS) != network_class.name:
                    continue
                name = self._resolver.attribute(device, attrs.POD_NETWORK)
                namespace = (
                    self._resolver.attribute(device, attrs.POD_NETWORK_NAMESPACE) if namespaced else None
                )
                advertised.add((namespace, name))

        objects = snapshot.objects_of(network_class.target)
        known = {(o.namespace if namespaced else None, o.name) for o in objects}
        for network_object in objects:
            report.count(CHECK_ADVERTISEMENT)
            key = (network_object.namespace if namespaced else None, network_object.name)
            if key not in advertised:
                report.add(
                    CHECK_ADVERTISEMENT,
                    subject,
                    f"{network_class.target.kind} {network_object.key} has no advertised device",
                )
        for namespace, name in sorted(advertised - known, key=lambda k: (k[0] or "", k[1] or "")):
            shown = f"{namespace}/{name}" if namespace else name
            report.add(
                CHECK_ADVERTISEMENT,
                subject,
                f"devices advertise {attrs.POD_NETWORK}={shown} but no such "
                f"{network_class.target.kind} exists",
            )

    def check_devices(self, snapshot: Snapshot, report: ConformanceReport) -> None:
        for resource_slice in self._current_slices(snapshot):
            for device in resource_slice.devices:
                if not self._resolver.attribute(device, attrs.POD_NETWORK):
                    continue
                report.count(CHECK_RESOLUTION)
                device_id = resource_slice.device_id(device)
                try:
                    self._resolver.resolve_in(snapshot, device_id)
                except ResolutionError as exc:
                    report.add(CHECK_RESOLUTION, f"Device/{device_id}", f"{exc.reason}: {exc.message}")

    def check_claim(self, snapshot: Snapshot, claim: ResourceClaim, report: ConformanceReport) -> None:
        allocated = {result.request for result in claim.allocation}
        for request in claim.requests:
            if request.name not in allocated:
                self._check_unallocated(snapshot, claim, request, report)

        for result in claim.allocation:
            if self._drivers and result.driver not in self._drivers:
                continue
            subject = f"ResourceClaim/{claim.key}[{result.request}]"
            report.count(CHECK_PROJECTION)
            try:
                resolution = self._resolver.resolve_in(snapshot, result.device_id)
                resource_slice, device = self._resolver.locate(
                    result.device_id, snapshot.slices_for(result.driver, result.pool)
                )
            except ResolutionError as exc:
                report.add(CHECK_RESOLUTION, subject, f"{exc.reason}: {exc.message}")
                continue

            request = claim.request(result.request)
            for expression, selector in self._network_selectors(request, subject, report):
                report.count(CHECK_SELECTION)
                try:
                    satisfied = selector.matches(resource_slice.driver, device)
                except SelectorError as exc:
                    report.add(CHECK_SELECTION, subject, f"cannot evaluate {expression!r}: {exc}")
                    continue
                if not satisfied:
                    report.add(
                        CHECK_SELECTION,
                        subject,
                        f"bound device {result.device_id} does not satisfy {expression!r}",
                    )

            entry = claim.status_for(result.device_id)
            projected = Resolution.from_data(entry.data) if entry else None
            if projected is None:
                report.add(CHECK_PROJECTION, subject, "status carries no resolved network")
            elif projected != resolution:
                report.add(
                    CHECK_PROJECTION,
                    subject,
                    f"status says {projected}, device resolves to {resolution}",
                )

    def _check_unallocated(
        self, snapshot: Snapshot, claim: ResourceClaim, request: DeviceRequest, report: ConformanceReport
    ) -> None:
        subject = f"ResourceClaim/{claim.key}[{request.name}]"
        selectors = self._network_selectors(request, subject, report)
        if not selectors:
            return
        report.count(CHECK_ALLOCATION)
        candidates = [
            resource_slice.device_id(device)
            for resource_slice in self._current_slices(snapshot)
            for device in resource_slice.devices
            if all(_satisfies(s, resource_slice.driver, device) for _, s in selectors)
        ]
        if candidates:
            shown = ", ".join(str(c) for c in candidates[:3])
            message = f"selects {len(candidates)} advertised device(s) ({shown}) but was never allocated"
        else:
            message = "no advertised device satisfies its network selectors"
        report.add(CHECK_ALLOCATION, subject, message)

    def _network_selectors(
        self, request: Optional[DeviceRequest], subject: str, report: ConformanceReport
    ) -> List[Tuple[str, Selector]]:
        """Compile the selectors of ``request`` that read a standardized attribute."""

        selectors = []
        for expression in request.selectors if request else ():
            try:
                selector = compile_selector(expression)
            except SelectorError as exc:
                report.add(CHECK_SELECTION, subject, f"cannot evaluate {expression!r}: {exc}")
                continue
            if any(selector.references(k) for k in attrs.STANDARD_KEYS):
                selectors.append((expression, selector))
        return selectors

    def _current_slices(self, snapshot: Snapshot):
        for driver, pool in sorted(snapshot.slices_by_pool):
            if self._drivers and driver not in self._drivers:
                continue
            yield from current_generation(snapshot.slices_for(driver, pool))
