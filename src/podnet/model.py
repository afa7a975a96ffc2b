"""Data structures for pod networks, classifications, devices and claims.

The controller works on plain Kubernetes object dictionaries at its edges
(watch events, status writes) and on these frozen dataclasses everywhere in
between. Each type keeps the dictionary it was parsed from in ``raw`` so that
fields the controller does not model are written back unchanged.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import attributes as attrs

POD_NETWORK = "PodNetwork"
NETWORK_CLASS = "NetworkClass"
RESOURCE_SLICE = "ResourceSlice"
RESOURCE_CLAIM = "ResourceClaim"


@dataclass(frozen=True)
class ResourceType:
    """API coordinates of a kind the controller watches."""

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = False

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


POD_NETWORK_TYPE = ResourceType("networking.k8s.io", "v1alpha1", "podnetworks", POD_NETWORK)
NETWORK_CLASS_TYPE = ResourceType("networking.k8s.io", "v1alpha1", "networkclasses", NETWORK_CLASS)
RESOURCE_SLICE_TYPE = ResourceType("resource.k8s.io", "v1", "resourceslices", RESOURCE_SLICE)
RESOURCE_CLAIM_TYPE = ResourceType(
    "resource.k8s.io", "v1", "resourceclaims", RESOURCE_CLAIM, namespaced=True
)

RESOURCE_TYPES: Dict[str, ResourceType] = {
    t.kind: t
    for t in (POD_NETWORK_TYPE, NETWORK_CLASS_TYPE, RESOURCE_SLICE_TYPE, RESOURCE_CLAIM_TYPE)
}


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


def object_key(name: str, namespace: Optional[str] = None) -> str:
    """Return the store key for an object (``namespace/name`` if namespaced)."""

    return f"{namespace}/{name}" if namespace else name


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping) or not metadata.get("name"):
        raise ValueError("object is missing metadata.name")
    return metadata


# ----------------------------------------------------------------------
# Conditions
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Condition:
    """A single ``metav1.Condition`` entry."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""
    observed_generation: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        if "type" not in data or "status" not in data:
            raise ValueError("condition requires 'type' and 'status'")
        return cls(
            type=str(data["type"]),
            status=str(data["status"]),
            reason=str(data.get("reason", "")),
            message=str(data.get("message", "")),
            last_transition_time=str(data.get("lastTransitionTime", "")),
            observed_generation=int(data.get("observedGeneration", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        return out

    def same_state(self, other: "Condition") -> bool:
        """Compare everything except the transition timestamp."""

        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
            and self.observed_generation == other.observed_generation
        )


def _parse_conditions(entries: Any) -> Tuple[Condition, ...]:
    if not entries:
        return ()
    if not isinstance(entries, list):
        raise ValueError("'conditions' must be a list")
    return tuple(Condition.from_dict(entry) for entry in entries)


# ----------------------------------------------------------------------
# Network identity and classification
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class PodNetwork:
    """Cluster-scoped network identity record.

    Attributes
    ----------
    provider:
        Domain-prefixed name of the implementation owning the network.
        Immutable after creation; enforced by :mod:`podnet.validation`.
    parameters:
        Opaque implementation payload. Never interpreted here.
    conditions:
        Implementation-authored conditions plus the ``Ready`` condition
        authored by the readiness reconciler.
    """

    name: str
    provider: str
    enabled: bool = True
    parameters: Mapping[str, Any] = field(default_factory=dict)
    conditions: Tuple[Condition, ...] = ()
    generation: int = 1
    resource_version: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PodNetwork":
        metadata = _metadata(obj)
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        enabled = spec.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError("spec.enabled must be a boolean")
        return cls(
            name=str(metadata["name"]),
            provider=str(spec.get("provider", "")),
            enabled=enabled,
            parameters=spec.get("parameters") or {},
            conditions=_parse_conditions(status.get("conditions")),
            generation=int(metadata.get("generation", 1) or 1),
            resource_version=str(metadata.get("resourceVersion", "")),
            raw=obj,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(dict(self.raw)) if self.raw else {}
        out["apiVersion"] = POD_NETWORK_TYPE.api_version
        out["kind"] = POD_NETWORK
        metadata = out.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["generation"] = self.generation
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        spec = out.setdefault("spec", {})
        spec["enabled"] = self.enabled
        spec["provider"] = self.provider
        if self.parameters:
            spec["parameters"] = copy.deepcopy(dict(self.parameters))
        status = out.setdefault("status", {})
        status["conditions"] = [c.to_dict() for c in self.conditions]
        return out

    def condition(self, condition_type: str) -> Optional[Condition]:
        return next((c for c in self.conditions if c.type == condition_type), None)

    def with_conditions(self, conditions: Sequence[Condition]) -> "PodNetwork":
        return replace(self, conditions=tuple(conditions))


@dataclass(frozen=True)
class NetworkClass:
    """Cluster-scoped classification pointing at an implementation kind."""

    name: str
    target: GroupVersionKind
    resource_version: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "NetworkClass":
        metadata = _metadata(obj)
        spec = obj.get("spec") or {}
        missing = [k for k in ("version", "kind") if not spec.get(k)]
        if missing:
            raise ValueError(f"NetworkClass spec missing {', '.join(missing)}")
        return cls(
            name=str(metadata["name"]),
            target=GroupVersionKind(
                group=str(spec.get("group", "")),
                version=str(spec["version"]),
                kind=str(spec["kind"]),
            ),
            resource_version=str(metadata.get("resourceVersion", "")),
            raw=obj,
        )


@dataclass(frozen=True)
class NetworkObject:
    """An implementation-owned object of a classified kind."""

    gvk: GroupVersionKind
    name: str
    namespace: Optional[str] = None
    resource_version: str = ""

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "NetworkObject":
        metadata = _metadata(obj)
        return cls(
            gvk=GroupVersionKind.from_api_version(str(obj.get("apiVersion", "")), str(obj.get("kind", ""))),
            name=str(metadata["name"]),
            namespace=metadata.get("namespace") or None,
            resource_version=str(metadata.get("resourceVersion", "")),
        )

    @property
    def key(self) -> str:
        return object_key(self.name, self.namespace)


# ----------------------------------------------------------------------
# Devices
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class DeviceID:
    driver: str
    pool: str
    device: str

    def __str__(self) -> str:
        return f"{self.driver}/{self.pool}/{self.device}"


@dataclass(frozen=True)
class Device:
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    capacity: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        if not data.get("name"):
            raise ValueError("device entry missing 'name'")
        # v1beta1 nests the attributes under "basic"
        body = data.get("basic") or data
        return cls(
            name=str(data["name"]),
            attributes=body.get("attributes") or {},
            capacity=body.get("capacity") or {},
        )

    def attribute(self, name: str, domain: str = attrs.DEFAULT_DOMAIN) -> Optional[str]:
        return attrs.lookup(self.attributes, name, domain)


@dataclass(frozen=True)
class ResourceSlice:
    """Device-list object advertised by a DRA driver for one pool."""

    name: str
    driver: str
    pool: str
    pool_generation: int = 0
    devices: Tuple[Device, ...] = ()
    node_name: Optional[str] = None
    resource_version: str = ""

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "ResourceSlice":
        metadata = _metadata(obj)
        spec = obj.get("spec") or {}
        pool = spec.get("pool") or {}
        if not spec.get("driver") or not pool.get("name"):
            raise ValueError("ResourceSlice requires spec.driver and spec.pool.name")
        return cls(
            name=str(metadata["name"]),
            driver=str(spec["driver"]),
            pool=str(pool["name"]),
            pool_generation=int(pool.get("generation", 0) or 0),
            devices=tuple(Device.from_dict(d) for d in spec.get("devices") or []),
            node_name=spec.get("nodeName"),
            resource_version=str(metadata.get("resourceVersion", "")),
        )

    def find(self, device_name: str) -> List[Device]:
        return [d for d in self.devices if d.name == device_name]

    def device_id(self, device: Device) -> DeviceID:
        return DeviceID(self.driver, self.pool, device.name)


# ----------------------------------------------------------------------
# Claims
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class DeviceRequest:
    name: str
    selectors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceRequest":
        # v1 moves the selectors under "exactly"
        body = data.get("exactly") or data
        selectors = []
        for selector in body.get("selectors") or []:
            expression = (selector.get("cel") or {}).get("expression")
            if expression:
                selectors.append(str(expression))
        return cls(name=str(data.get("name", "")), selectors=tuple(selectors))


@dataclass(frozen=True)
class AllocationResult:
    request: str
    driver: str
    pool: str
    device: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AllocationResult":
        try:
            return cls(
                request=str(data.get("request", "")),
                driver=str(data["driver"]),
                pool=str(data["pool"]),
                device=str(data["device"]),
            )
        except KeyError as exc:
            raise ValueError(f"allocation result missing {exc.args[0]!r}") from None

    @property
    def device_id(self) -> DeviceID:
        return DeviceID(self.driver, self.pool, self.device)


@dataclass(frozen=True)
class NetworkDeviceData:
    """Connection data reported by the implementation for a bound device."""

    interface_name: str = ""
    hardware_address: str = ""
    ips: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetworkDeviceData":
        return cls(
            interface_name=str(data.get(attrs.INTERFACE_NAME, "")),
            hardware_address=str(data.get(attrs.HARDWARE_ADDRESS, "")),
            ips=tuple(str(ip) for ip in data.get(attrs.IPS) or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.interface_name:
            out[attrs.INTERFACE_NAME] = self.interface_name
        if self.hardware_address:
            out[attrs.HARDWARE_ADDRESS] = self.hardware_address
        if self.ips:
            out[attrs.IPS] = list(self.ips)
        return out


@dataclass(frozen=True)
class AllocatedDeviceStatus:
    """One ``status.devices[]`` entry of a claim."""

    driver: str
    pool: str
    device: str
    conditions: Tuple[Condition, ...] = ()
    # Opaque to the API server; drivers may report any JSON value here.
    data: Any = field(default_factory=dict)
    network_data: Optional[NetworkDeviceData] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AllocatedDeviceStatus":
        network_data = data.get(attrs.STATUS_NETWORK_DATA)
        return cls(
            driver=str(data.get("driver", "")),
            pool=str(data.get("pool", "")),
            device=str(data.get("device", "")),
            conditions=_parse_conditions(data.get(attrs.STATUS_CONDITIONS)),
            data=data.get(attrs.STATUS_DATA) or {},
            network_data=NetworkDeviceData.from_dict(network_data) if network_data else None,
            raw=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(dict(self.raw)) if self.raw else {}
        out.update(driver=self.driver, pool=self.pool, device=self.device)
        for key, value in (
            (attrs.STATUS_CONDITIONS, [c.to_dict() for c in self.conditions]),
            (attrs.STATUS_DATA, copy.deepcopy(self.data)),
            (attrs.STATUS_NETWORK_DATA, self.network_data.to_dict() if self.network_data else None),
        ):
            if value:
                out[key] = value
            else:
                out.pop(key, None)
        return out

    @property
    def device_id(self) -> DeviceID:
        return DeviceID(self.driver, self.pool, self.device)

    def condition(self, condition_type: str) -> Optional[Condition]:
        return next((c for c in self.conditions if c.type == condition_type), None)


@dataclass(frozen=True)
class ResourceClaim:
    """Namespaced attachment claim."""

    namespace: str
    name: str
    requests: Tuple[DeviceRequest, ...] = ()
    allocation: Tuple[AllocationResult, ...] = ()
    devices: Tuple[AllocatedDeviceStatus, ...] = ()
    resource_version: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "ResourceClaim":
        metadata = _metadata(obj)
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        allocation = ((status.get("allocation") or {}).get("devices") or {}).get("results") or []
        return cls(
            namespace=str(metadata.get("namespace") or "default"),
            name=str(metadata["name"]),
            requests=tuple(
                DeviceRequest.from_dict(r) for r in (spec.get("devices") or {}).get("requests") or []
            ),
            allocation=tuple(AllocationResult.from_dict(r) for r in allocation),
            devices=tuple(AllocatedDeviceStatus.from_dict(d) for d in status.get("devices") or []),
            resource_version=str(metadata.get("resourceVersion", "")),
            raw=obj,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(dict(self.raw)) if self.raw else {}
        out.setdefault("apiVersion", RESOURCE_CLAIM_TYPE.api_version)
        out.setdefault("kind", RESOURCE_CLAIM)
        metadata = out.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        status = out.setdefault("status", {})
        if self.devices:
            status["devices"] = [d.to_dict() for d in self.devices]
        else:
            status.pop("devices", None)
        return out

    @property
    def key(self) -> str:
        return object_key(self.name, self.namespace)

    def request(self, name: str) -> Optional[DeviceRequest]:
        return next((r for r in self.requests if r.name == name), None)

    def status_for(self, device_id: DeviceID) -> Optional[AllocatedDeviceStatus]:
        return next((d for d in self.devices if d.device_id == device_id), None)

    def pools(self) -> List[Tuple[str, str]]:
        return list(dict.fromkeys((r.driver, r.pool) for r in self.allocation))

    def with_devices(self, devices: Sequence[AllocatedDeviceStatus]) -> "ResourceClaim":
        return replace(self, devices=tuple(devices))


# ----------------------------------------------------------------------
# CustomResourceDefinitions (source of kind scopes)
# ----------------------------------------------------------------------
CRD_GROUP = "apiextensions.k8s.io"
CUSTOM_RESOURCE_DEFINITION = "CustomResourceDefinition"
CRD_TYPE = ResourceType(CRD_GROUP, "v1", "customresourcedefinitions", CUSTOM_RESOURCE_DEFINITION)


@dataclass(frozen=True)
class CustomResourceDefinition:
    """The parts of a CRD needed to know how a network kind is scoped."""

    name: str
    group: str
    kind: str
    plural: str
    namespaced: bool
    versions: Tuple[str, ...] = ()
    resource_version: str = ""

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "CustomResourceDefinition":
        metadata = _metadata(obj)
        spec = obj.get("spec") or {}
        names = spec.get("names") or {}
        if not spec.get("group") or not names.get("kind"):
            raise ValueError("CRD requires spec.group and spec.names.kind")
        return cls(
            name=str(metadata["name"]),
            group=str(spec["group"]),
            kind=str(names["kind"]),
            plural=str(names.get("plural", "")),
            namespaced=spec.get("scope", "Namespaced") == "Namespaced",
            versions=tuple(str(v["name"]) for v in spec.get("versions") or [] if v.get("name")),
            resource_version=str(metadata.get("resourceVersion", "")),
        )

    def kinds(self) -> List[GroupVersionKind]:
        return [GroupVersionKind(self.group, version, self.kind) for version in self.versions]

    def resource_type(self, version: str) -> ResourceType:
        return ResourceType(self.group, version, self.plural, self.kind, self.namespaced)
