"""Object read / conditional write contract used by the reconcilers.

:class:`ObjectClient` is the only path through which the reconcilers touch
the API server. :class:`MemoryCluster` is a self-contained implementation
that keeps objects in memory, enforces ``resourceVersion`` preconditions the
way the API server does and publishes watch events to a registry. It backs
the file-driven runtime mode and the test-suite.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .events import ObjectDelete, ObjectUpsert
from .exceptions import ConflictError, NotFoundError
from .model import GroupVersionKind, ResourceType
from .registry import HandlerRegistry

LOG = logging.getLogger(__name__)

_Key = Tuple[str, str, Optional[str], str]


class ObjectClient(ABC):
    """Read and status-write access to cluster objects."""

    @abstractmethod
    def get(self, resource: ResourceType, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Return the live object or raise :class:`NotFoundError`."""

    @abstractmethod
    def replace_status(self, resource: ResourceType, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Replace the status of ``obj``.

        The write is conditional on ``metadata.resourceVersion``; a stale
        version raises :class:`ConflictError` and a missing object raises
        :class:`NotFoundError`.
        """

    @abstractmethod
    def record_event(
        self,
        resource: ResourceType,
        name: str,
        namespace: Optional[str],
        reason: str,
        message: str,
        event_type: str = "Warning",
    ) -> None:
        """Attach an event to the object ``name`` of ``resource``."""


def _key(api_version: str, kind: str, namespace: Optional[str], name: str) -> _Key:
    # Objects are keyed by group, not version, so a claim recorded as
    # v1beta1 is still found through the v1 resource type.
    group = api_version.rpartition("/")[0]
    return group, kind, namespace or None, name


class MemoryCluster(ObjectClient):
    """In-memory API server stand-in publishing events to ``registry``."""

    def __init__(self, registry: Optional[HandlerRegistry] = None) -> None:
        self._registry = registry
        self._objects: Dict[_Key, Dict[str, Any]] = {}
        self._lock = Lock()
        self._version = 0
        self.status_writes: List[Tuple[str, str]] = []
        self.events: List[Dict[str, Any]] = []

    def attach(self, registry: HandlerRegistry) -> None:
        self._registry = registry

    # ------------------------------------------------------------------
    # Object lifecycle (what kubectl / other controllers would do)
    # ------------------------------------------------------------------
    def apply(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Create or update an object, keeping the stored status if absent."""

        incoming = copy.deepcopy(dict(obj))
        metadata = incoming.setdefault("metadata", {})
        if not metadata.get("name"):
            raise ValueError("object is missing metadata.name")
        key = _key(
            str(incoming.get("apiVersion", "")),
            str(incoming.get("kind", "")),
            metadata.get("namespace"),
            metadata["name"],
        )
        with self._lock:
            stored = self._objects.get(key)
            generation = 1
            if stored is not None:
                generation = stored["metadata"].get("generation", 1)
                if stored.get("spec") != incoming.get("spec"):
                    generation += 1
                if "status" not in incoming and "status" in stored:
                    incoming["status"] = copy.deepcopy(stored["status"])
                if stored == {**incoming, "metadata": stored["metadata"]}:
                    return copy.deepcopy(stored)
            metadata["generation"] = generation
            metadata["resourceVersion"] = self._next_version()
            self._objects[key] = incoming
            self._publish(ObjectUpsert(copy.deepcopy(incoming)))
            return copy.deepcopy(incoming)

    def delete(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> None:
        with self._lock:
            if self._objects.pop(_key(api_version, kind, namespace, name), None) is None:
                raise NotFoundError(f"{kind} {name} not found")
            self._publish(
                ObjectDelete(GroupVersionKind.from_api_version(api_version, kind), name, namespace)
            )

    def objects(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._objects.values()]

    # ------------------------------------------------------------------
    # ObjectClient
    # ------------------------------------------------------------------
    def get(self, resource: ResourceType, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            stored = self._objects.get(self._resource_key(resource, name, namespace))
            if stored is None:
                raise NotFoundError(f"{resource.kind} {name} not found")
            return copy.deepcopy(stored)

    def replace_status(self, resource: ResourceType, obj: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = obj.get("metadata") or {}
        name = metadata.get("name", "")
        key = self._resource_key(resource, name, metadata.get("namespace"))
        with self._lock:
            stored = self._objects.get(key)
            if stored is None:
                raise NotFoundError(f"{resource.kind} {name} not found")
            expected = metadata.get("resourceVersion")
            if expected and expected != stored["metadata"]["resourceVersion"]:
                raise ConflictError(
                    f"{resource.kind} {name}: resourceVersion {expected} is stale "
                    f"(current {stored['metadata']['resourceVersion']})"
                )
            updated = copy.deepcopy(stored)
            updated["status"] = copy.deepcopy(obj.get("status") or {})
            updated["metadata"]["resourceVersion"] = self._next_version()
            self._objects[key] = updated
            self.status_writes.append((resource.kind, name))
            LOG.debug(
                "%s %s status written at resourceVersion %s",
                resource.kind,
                name,
                updated["metadata"]["resourceVersion"],
            )
            self._publish(ObjectUpsert(copy.deepcopy(updated)))
            return copy.deepcopy(updated)

    def record_event(
        self,
        resource: ResourceType,
        name: str,
        namespace: Optional[str],
        reason: str,
        message: str,
        event_type: str = "Warning",
    ) -> None:
        event = {
            "involvedObject": {
                "apiVersion": resource.api_version,
                "kind": resource.kind,
                "name": name,
                "namespace": namespace,
            },
            "reason": reason,
            "message": message,
            "type": event_type,
        }
        with self._lock:
            self.events.append(event)
        LOG.debug("%s event on %s %s: %s", event_type, resource.kind, name, message)

    # ------------------------------------------------------------------
    def _resource_key(self, resource: ResourceType, name: str, namespace: Optional[str]) -> _Key:
        return _key(resource.api_version, resource.kind, namespace if resource.namespaced else None, name)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _publish(self, event) -> None:
        if self._registry is not None:
            self._registry.handle(event)
