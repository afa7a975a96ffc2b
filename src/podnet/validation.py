"""Admission rules for PodNetwork and NetworkClass objects.

These checks run before an object is persisted (webhook or CRD validation
rules); objects reaching the reconcilers are assumed to have passed them.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, Mapping, Optional

from . import attributes as attrs
from .exceptions import ValidationError
from .model import NETWORK_CLASS, POD_NETWORK

MAX_PROVIDER_LENGTH = 253
MAX_NAME_LENGTH = 253

_DNS_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS_SUBDOMAIN = re.compile(rf"^{_DNS_LABEL}(\.{_DNS_LABEL})*$")
_PROVIDER_PATH = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_./]*[A-Za-z0-9])?$")
_KIND = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_VERSION = re.compile(r"^v[0-9]+((alpha|beta)[0-9]+)?$")


def validate_name(name: Any) -> None:
    if not isinstance(name, str) or not name:
        raise ValidationError("metadata.name is required")
    if len(name) > MAX_NAME_LENGTH or not _DNS_SUBDOMAIN.match(name):
        raise ValidationError(f"metadata.name {name!r} is not a valid DNS subdomain")


def validate_provider(provider: Any) -> None:
    """Check ``provider`` is a domain-prefixed path such as ``foo.io/bar``."""

    if not isinstance(provider, str) or not provider:
        raise ValidationError("spec.provider is required")
    if len(provider) > MAX_PROVIDER_LENGTH:
        raise ValidationError(
            f"spec.provider must be at most {MAX_PROVIDER_LENGTH} characters"
        )
    domain, _, path = provider.partition("/")
    if not path or "." not in domain or not _DNS_SUBDOMAIN.match(domain):
        raise ValidationError(
            f"spec.provider {provider!r} must be prefixed with a domain (e.g. 'example.com/name')"
        )
    if not _PROVIDER_PATH.match(path):
        raise ValidationError(f"spec.provider {provider!r} has an invalid name part")


def _validate_conditions(status: Mapping[str, Any]) -> None:
    conditions = status.get("conditions") or []
    if not isinstance(conditions, list):
        raise ValidationError("status.conditions must be a list")
    if len(conditions) > attrs.MAX_CONDITIONS:
        raise ValidationError(
            f"status.conditions may hold at most {attrs.MAX_CONDITIONS} entries"
        )
    seen = set()
    for condition in conditions:
        ctype = condition.get("type")
        if not ctype:
            raise ValidationError("every condition needs a type")
        if ctype in seen:
            raise ValidationError(f"duplicate condition type {ctype!r}")
        seen.add(ctype)
        if condition.get("status") not in (attrs.STATUS_TRUE, attrs.STATUS_FALSE, attrs.STATUS_UNKNOWN):
            raise ValidationError(f"condition {ctype!r} has invalid status {condition.get('status')!r}")


def validate_pod_network(obj: Mapping[str, Any], old: Optional[Mapping[str, Any]] = None) -> None:
    validate_name((obj.get("metadata") or {}).get("name"))
    spec = obj.get("spec") or {}
    validate_provider(spec.get("provider"))
    if "enabled" in spec and not isinstance(spec["enabled"], bool):
        raise ValidationError("spec.enabled must be a boolean")
    parameters = spec.get("parameters")
    if parameters is not None and not isinstance(parameters, Mapping):
        raise ValidationError("spec.parameters must be an object")
    _validate_conditions(obj.get("status") or {})

    if old is not None:
        old_provider = (old.get("spec") or {}).get("provider")
        if old_provider != spec.get("provider"):
            raise ValidationError("spec.provider is immutable")


def validate_network_class(obj: Mapping[str, Any], old: Optional[Mapping[str, Any]] = None) -> None:
    validate_name((obj.get("metadata") or {}).get("name"))
    spec = obj.get("spec") or {}
    group = spec.get("group", "")
    if group and not _DNS_SUBDOMAIN.match(group):
        raise ValidationError(f"spec.group {group!r} is not a valid API group")
    if not _VERSION.match(str(spec.get("version", ""))):
        raise ValidationError(f"spec.version {spec.get('version')!r} is not a valid API version")
    if not _KIND.match(str(spec.get("kind", ""))):
        raise ValidationError(f"spec.kind {spec.get('kind')!r} is not a valid kind")

    if old is not None and (old.get("spec") or {}) != spec:
        raise ValidationError("NetworkClass spec is immutable")


def validate(obj: Mapping[str, Any], old: Optional[Mapping[str, Any]] = None) -> None:
    """Validate a create (``old is None``) or update of ``obj``."""

    kind = obj.get("kind")
    if kind == POD_NETWORK:
        validate_pod_network(obj, old)
    elif kind == NETWORK_CLASS:
        validate_network_class(obj, old)
    else:
        raise ValidationError(f"unsupported kind {kind!r}")


def default_pod_network(obj: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply creation defaults: ``enabled=true`` and ``Ready=Unknown/Pending``."""

    out = copy.deepcopy(dict(obj))
    spec = out.setdefault("spec", {})
    spec.setdefault("enabled", True)
    status = out.setdefault("status", {})
    if not status.get("conditions"):
        status["conditions"] = [
            {
                "type": attrs.CONDITION_READY,
                "status": attrs.STATUS_UNKNOWN,
                "reason": attrs.REASON_PENDING,
                "message": "waiting for the controller to evaluate the network",
                "lastTransitionTime": "1970-01-01T00:00:00Z",
            }
        ]
    return out
