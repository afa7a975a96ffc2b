"""Watch one resource type on a live cluster and publish its events."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Any, Dict, Optional, Tuple

from kubernetes import client, watch

from podnet.events import ObjectDelete, ObjectUpsert
from podnet.exceptions import StoreCorrupted
from podnet.model import GroupVersionKind, ResourceType
from podnet.registry import HandlerRegistry

from ..kube import KubernetesObjectClient

LOG = logging.getLogger(__name__)

ObjectKey = Tuple[Optional[str], str]


class ResourceExpired(Exception):
    """The watch fell behind etcd compaction; a fresh list is needed."""


def _get_backoff(current: float, maximum: float) -> float:
    return min(max(current * 2, 1.0), maximum)


class KubernetesWatcher(Thread):
    """List-then-watch ``resource`` and feed the events into ``registry``.

    Objects that vanished while the watch was down are detected on relist and
    published as deletes.
    """

    def __init__(
        self,
        kube: KubernetesObjectClient,
        resource: ResourceType,
        registry: HandlerRegistry,
        stop_event: Event,
        *,
        timeout_seconds: int = 300,
        max_backoff: float = 128.0,
    ) -> None:
        super().__init__(daemon=True, name=f"kube-watcher:{resource.plural}.{resource.group}")
        self._kube = kube
        self._resource = resource
        self._registry = registry
        self._stop_event = stop_event
        self._timeout_seconds = timeout_seconds
        self._max_backoff = max_backoff
        self._known: Dict[ObjectKey, Dict[str, Any]] = {}
        self._resource_version: Optional[str] = None
        self._watch: Optional[watch.Watch] = None
        self.fatal: Optional[BaseException] = None

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind(self._resource.group, self._resource.version, self._resource.kind)

    def run(self) -> None:
        backoff = 0.0
        while not self._stop_event.is_set():
            if backoff and self._stop_event.wait(backoff):
                break
            try:
                if self._resource_version is None:
                    self.relist()
                self._stream()
                backoff = 0.0
            except StoreCorrupted as exc:
                LOG.critical("local store corrupted while watching %s: %s", self._resource.plural, exc)
                self.fatal = exc
                self._stop_event.set()
                return
            except ResourceExpired:
                LOG.info("watch of %s expired; relisting", self._resource.plural)
                self._resource_version = None
            except client.ApiException as exc:
                if exc.status == 410:
                    LOG.info("watch of %s expired; relisting", self._resource.plural)
                    self._resource_version = None
                    continue
                LOG.error("Kubernetes API error watching %s: %s", self._resource.plural, exc)
                backoff = _get_backoff(backoff, self._max_backoff)
            except Exception:
                LOG.exception("unexpected error watching %s", self._resource.plural)
                self._resource_version = None
                backoff = _get_backoff(backoff, self._max_backoff)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

    def relist(self) -> None:
        """Replace the known object set with a fresh list."""

        response = self._kube.list(self._resource)
        current: Dict[ObjectKey, Dict[str, Any]] = {}
        for item in response.get("items") or []:
            item.setdefault("apiVersion", self._resource.api_version)
            item.setdefault("kind", self._resource.kind)
            current[self._identity(item)] = item

        for key in set(self._known) - set(current):
            namespace, name = key
            self._registry.handle(ObjectDelete(self.gvk, name, namespace))
        for item in current.values():
            self._registry.handle(ObjectUpsert(item))

        self._known = current
        self._resource_version = (response.get("metadata") or {}).get("resourceVersion")
        LOG.debug("listed %d %s at %s", len(current), self._resource.plural, self._resource_version)

    def _stream(self) -> None:
        self._watch = watch.Watch()
        for event in self._watch.stream(
            self._kube.api.list_cluster_custom_object,
            group=self._resource.group,
            version=self._resource.version,
            plural=self._resource.plural,
            resource_version=self._resource_version,
            allow_watch_bookmarks=True,
            timeout_seconds=self._timeout_seconds,
        ):
            if self._stop_event.is_set():
                self._watch.stop()
                return
            self.dispatch(event)

    def dispatch(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = event.get("object") or {}
        if event_type == "ERROR":
            if obj.get("code") == 410:
                raise ResourceExpired(obj.get("message", "resource version too old"))
            raise client.ApiException(status=obj.get("code"), reason=obj.get("message"))

        version = (obj.get("metadata") or {}).get("resourceVersion")
        if version:
            self._resource_version = version
        if event_type == "BOOKMARK":
            return

        obj.setdefault("apiVersion", self._resource.api_version)
        obj.setdefault("kind", self._resource.kind)
        key = self._identity(obj)
        if event_type == "DELETED":
            self._known.pop(key, None)
            namespace, name = key
            self._registry.handle(ObjectDelete(self.gvk, name, namespace))
        elif event_type in ("ADDED", "MODIFIED"):
            self._known[key] = obj
            self._registry.handle(ObjectUpsert(obj))
        else:
            LOG.debug("ignoring %s event for %s", event_type, self._resource.plural)

    @staticmethod
    def _identity(obj: Dict[str, Any]) -> ObjectKey:
        metadata = obj.get("metadata") or {}
        return metadata.get("namespace") or None, metadata.get("name", "")
