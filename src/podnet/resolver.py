"""Map a bound device back to the pod network it represents.

Resolution is a pure function of a store snapshot: the device is looked up
in the slices advertising its pool and the standardized attributes are read
from it. Nothing is cached between calls because slices and classifications
can change or disappear at any time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from . import attributes as attrs
from .exceptions import (
    AmbiguousDevice,
    AttributeMissing,
    ClassificationNotFound,
    DeviceNotFound,
    KindScopeUnknown,
    NamespaceRequired,
)
from .model import Device, DeviceID, ResourceSlice
from .store import Snapshot

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Network identity recovered from a device."""

    pod_network: str
    network_class: Optional[str] = None
    namespace: Optional[str] = None

    def as_data(self) -> Dict[str, str]:
        """Render the resolution as claim status ``data`` entries."""

        data = {attrs.POD_NETWORK: self.pod_network}
        if self.network_class:
            data[attrs.NETWORK_CLASS] = self.network_class
        if self.namespace:
            data[attrs.POD_NETWORK_NAMESPACE] = self.namespace
        return data

    @classmethod
    def from_data(cls, data: Any) -> Optional["Resolution"]:
        if not isinstance(data, Mapping):
            return None
        pod_network = data.get(attrs.POD_NETWORK)
        if not pod_network:
            return None
        return cls(
            pod_network=str(pod_network),
            network_class=data.get(attrs.NETWORK_CLASS) or None,
            namespace=data.get(attrs.POD_NETWORK_NAMESPACE) or None,
        )

    def __str__(self) -> str:
        parts = [self.pod_network]
        if self.namespace:
            parts.insert(0, self.namespace)
        text = "/".join(parts)
        return f"{text} ({self.network_class})" if self.network_class else text


def current_generation(slices: Sequence[ResourceSlice]) -> Tuple[ResourceSlice, ...]:
    """Return the slices belonging to the newest generation of their pool."""

    if not slices:
        return ()
    newest = max(s.pool_generation for s in slices)
    return tuple(s for s in slices if s.pool_generation == newest)


class DeviceResolver:
    """Resolve ``(driver, pool, device)`` to a :class:`Resolution`.

    Parameters
    ----------
    domain:
        Attribute domain the standardized keys are qualified with. Bare
        keys are accepted as a fallback.
    """

    def __init__(self, domain: str = attrs.DEFAULT_DOMAIN) -> None:
        self._domain = domain

    @property
    def domain(self) -> str:
        return self._domain

    def locate(self, device_id: DeviceID, slices: Sequence[ResourceSlice]) -> Tuple[ResourceSlice, Device]:
        """Find the single device matching ``device_id`` in ``slices``."""

        candidates = [
            s for s in slices if s.driver == device_id.driver and s.pool == device_id.pool
        ]
        matches = [
            (s, d) for s in current_generation(candidates) for d in s.find(device_id.device)
        ]
        if not matches:
            raise DeviceNotFound(f"device {device_id} is not advertised by any ResourceSlice")
        if len(matches) > 1:
            names = ", ".join(sorted(s.name for s, _ in matches))
            raise AmbiguousDevice(f"device {device_id} is advertised by several slices: {names}")
        return matches[0]

    def attribute(self, device: Device, name: str) -> Optional[str]:
        return device.attribute(name, self._domain)

    def resolve(
        self,
        device_id: DeviceID,
        slices: Sequence[ResourceSlice],
        snapshot: Snapshot,
    ) -> Resolution:
        """Resolve ``device_id`` using ``slices`` and the classifications in ``snapshot``."""

        _, device = self.locate(device_id, slices)

        pod_network = self.attribute(device, attrs.POD_NETWORK)
        if not pod_network:
            raise AttributeMissing(
                f"device {device_id} has no {attrs.POD_NETWORK} attribute"
            )

        class_name = self.attribute(device, attrs.NETWORK_CLASS)
        if not class_name:
            # Identity-record model: the device points straight at a PodNetwork.
            return Resolution(pod_network=pod_network)

        network_class = snapshot.network_class(class_name)
        if network_class is None:
            raise ClassificationNotFound(
                f"device {device_id} references unknown NetworkClass {class_name}"
            )

        namespaced = snapshot.namespaced(network_class.target)
        if namespaced is None:
            raise KindScopeUnknown(
                f"scope of {network_class.target} (NetworkClass {class_name}) is not known"
            )

        namespace = None
        if namespaced:
            namespace = self.attribute(device, attrs.POD_NETWORK_NAMESPACE)
            if not namespace:
                raise NamespaceRequired(
                    f"device {device_id} targets namespaced kind {network_class.target.kind} "
                    f"but has no {attrs.POD_NETWORK_NAMESPACE} attribute"
                )

        resolution = Resolution(pod_network=pod_network, network_class=class_name, namespace=namespace)
        LOG.debug("device %s resolved to %s", device_id, resolution)
        return resolution

    def resolve_in(self, snapshot: Snapshot, device_id: DeviceID) -> Resolution:
        """Resolve ``device_id`` against the slices indexed in ``snapshot``."""

        return self.resolve(device_id, snapshot.slices_for(device_id.driver, device_id.pool), snapshot)
