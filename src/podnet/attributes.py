"""Standardized attribute keys and status field names.

Devices advertised through a ``ResourceSlice`` carry free-form attributes.
Three of them are shared between implementations so that a bound device can
be mapped back to the pod network it represents. Everything else on a device
is implementation specific and is passed through untouched.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

DEFAULT_DOMAIN = "networking.k8s.io"

# Device attribute keys
POD_NETWORK = "podNetwork"
POD_NETWORK_NAMESPACE = "podNetworkNamespace"
NETWORK_CLASS = "networkClass"

STANDARD_KEYS = (POD_NETWORK, POD_NETWORK_NAMESPACE, NETWORK_CLASS)

# Claim status fields (status.devices[])
STATUS_DATA = "data"
STATUS_NETWORK_DATA = "networkData"
STATUS_CONDITIONS = "conditions"
INTERFACE_NAME = "interfaceName"
HARDWARE_ADDRESS = "hardwareAddress"
IPS = "ips"

# Condition types
CONDITION_READY = "Ready"
CONDITION_IN_USE = "InUse"
CONDITION_NETWORK_RESOLVED = "NetworkResolved"

NON_GATING_CONDITIONS = frozenset({CONDITION_READY, CONDITION_IN_USE})

# Condition reasons authored by the controller
REASON_READY = "Ready"
REASON_PENDING = "Pending"
REASON_DISABLED = "AdministrativelyDisabled"
REASON_CONDITIONS_NOT_READY = "ConditionsNotReady"
REASON_RESOLVED = "Resolved"
REASON_DATA_NOT_OBJECT = "DataNotObject"
REASON_RECONCILE_FAILED = "ReconcileFailed"

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

MAX_CONDITIONS = 5

# Typed value keys used by the DRA attribute encoding
_VALUE_TYPES = ("string", "bool", "int", "version")


def qualified(name: str, domain: str = DEFAULT_DOMAIN) -> str:
    """Return ``name`` qualified with ``domain`` (``<domain>/<name>``)."""

    return f"{domain}/{name}"


def split_qualified(key: str) -> tuple[Optional[str], str]:
    """Split ``<domain>/<name>`` into its parts; bare names have no domain."""

    if "/" in key:
        domain, _, name = key.rpartition("/")
        return domain, name
    return None, key


def attribute_value(value: Any) -> Optional[str]:
    """Decode a device attribute value as a string.

    DRA encodes attributes as single-key mappings (``{"string": "blue"}``).
    The standardized keys are string-valued today; other encodings are
    rendered with ``str`` so a mistyped attribute still compares predictably.
    Plain scalars are accepted for recorded states written by hand.
    """

    if value is None:
        return None
    if isinstance(value, Mapping):
        for value_type in _VALUE_TYPES:
            if value_type in value:
                raw = value[value_type]
                if isinstance(raw, bool):
                    return "true" if raw else "false"
                return None if raw is None else str(raw)
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def lookup(
    attributes: Mapping[str, Any],
    name: str,
    domain: str = DEFAULT_DOMAIN,
) -> Optional[str]:
    """Return the string value of a standardized attribute.

    The domain-qualified key wins over the bare one. Empty strings count as
    absent.
    """

    for key in (qualified(name, domain), name):
        if key in attributes:
            decoded = attribute_value(attributes[key])
            if decoded:
                return decoded
    return None
