"""Watch-fed, copy-on-write store of network identities and their peers.

Writers (watch handlers) serialise on a lock and publish a brand new
:class:`Snapshot`; readers grab the current snapshot reference and never
block. A snapshot is immutable, so a reconciliation that took one keeps a
consistent view for its whole pass even if objects are deleted meanwhile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from threading import Lock
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .events import KindScopeUpsert, ObjectDelete, ObjectUpsert
from .exceptions import StoreCorrupted
from .model import (
    CRD_GROUP,
    CUSTOM_RESOURCE_DEFINITION,
    NETWORK_CLASS,
    NETWORK_CLASS_TYPE,
    POD_NETWORK,
    POD_NETWORK_TYPE,
    RESOURCE_CLAIM,
    RESOURCE_CLAIM_TYPE,
    RESOURCE_SLICE,
    RESOURCE_SLICE_TYPE,
    GroupVersionKind,
    NetworkClass,
    NetworkObject,
    PodNetwork,
    ResourceClaim,
    CustomResourceDefinition,
    ResourceSlice,
    object_key,
)
from .registry import EventHandler

LOG = logging.getLogger(__name__)

PoolKey = Tuple[str, str]

_EMPTY: Mapping = MappingProxyType({})


def _frozen(data: Dict) -> Mapping:
    return MappingProxyType(data)


def _empty() -> Mapping:
    return _EMPTY


@dataclass(frozen=True)
class Snapshot:
    """Immutable view over every index of the store."""

    pod_networks: Mapping[str, PodNetwork] = field(default_factory=_empty)
    network_classes: Mapping[str, NetworkClass] = field(default_factory=_empty)
    classes_by_kind: Mapping[GroupVersionKind, FrozenSet[str]] = field(default_factory=_empty)
    slices: Mapping[str, ResourceSlice] = field(default_factory=_empty)
    slices_by_pool: Mapping[PoolKey, FrozenSet[str]] = field(default_factory=_empty)
    claims: Mapping[str, ResourceClaim] = field(default_factory=_empty)
    claims_by_pool: Mapping[PoolKey, FrozenSet[str]] = field(default_factory=_empty)
    network_objects: Mapping[GroupVersionKind, Mapping[str, NetworkObject]] = field(default_factory=_empty)
    kind_scopes: Mapping[GroupVersionKind, bool] = field(default_factory=_empty)
    crd_kinds: Mapping[str, Tuple[GroupVersionKind, ...]] = field(default_factory=_empty)
    sequence: int = 0

    def pod_network(self, name: str) -> Optional[PodNetwork]:
        return self.pod_networks.get(name)

    def network_class(self, name: str) -> Optional[NetworkClass]:
        return self.network_classes.get(name)

    def classes_for(self, gvk: GroupVersionKind) -> List[NetworkClass]:
        names = sorted(self.classes_by_kind.get(gvk, frozenset()))
        return [self.network_classes[n] for n in names]

    def slices_for(self, driver: str, pool: str) -> List[ResourceSlice]:
        names = sorted(self.slices_by_pool.get((driver, pool), frozenset()))
        return [self.slices[n] for n in names]

    def claim(self, key: str) -> Optional[ResourceClaim]:
        return self.claims.get(key)

    def claims_for_pool(self, driver: str, pool: str) -> List[str]:
        return sorted(self.claims_by_pool.get((driver, pool), frozenset()))

    def namespaced(self, gvk: GroupVersionKind) -> Optional[bool]:
        return self.kind_scopes.get(gvk)

    def objects_of(self, gvk: GroupVersionKind) -> List[NetworkObject]:
        objects = self.network_objects.get(gvk, _EMPTY)
        return [objects[k] for k in sorted(objects)]


def _index_add(index: Mapping, key, member: str) -> Dict:
    updated = dict(index)
    updated[key] = frozenset(updated.get(key, frozenset()) | {member})
    return updated


def _index_remove(index: Mapping, key, member: str) -> Dict:
    updated = dict(index)
    remaining = frozenset(updated.get(key, frozenset()) - {member})
    if remaining:
        updated[key] = remaining
    else:
        updated.pop(key, None)
    return updated


def _is(gvk: GroupVersionKind, kind: str, group: str) -> bool:
    return gvk.kind == kind and gvk.group == group


class NetworkStore(EventHandler):
    """Maintain indexed snapshots from upsert/delete events."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._snapshot = Snapshot()

    def snapshot(self) -> Snapshot:
        return self._snapshot

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------
    def on_upsert(self, event: ObjectUpsert) -> None:
        gvk = event.gvk
        try:
            with self._lock:
                if _is(gvk, POD_NETWORK, POD_NETWORK_TYPE.group):
                    self._put_pod_network(PodNetwork.from_dict(event.obj))
                elif _is(gvk, NETWORK_CLASS, NETWORK_CLASS_TYPE.group):
                    self._put_network_class(NetworkClass.from_dict(event.obj))
                elif _is(gvk, RESOURCE_SLICE, RESOURCE_SLICE_TYPE.group):
                    self._put_slice(ResourceSlice.from_dict(event.obj))
                elif _is(gvk, RESOURCE_CLAIM, RESOURCE_CLAIM_TYPE.group):
                    self._put_claim(ResourceClaim.from_dict(event.obj))
                elif _is(gvk, CUSTOM_RESOURCE_DEFINITION, CRD_GROUP):
                    self._put_crd(CustomResourceDefinition.from_dict(event.obj))
                else:
                    self._put_network_object(NetworkObject.from_dict(event.obj))
        except ValueError as exc:
            # The last good version is not kept.
            LOG.error("dropping malformed %s %s: %s", gvk.kind, event.name, exc)
            self.on_delete(ObjectDelete(gvk, event.name, event.namespace))

    def on_delete(self, event: ObjectDelete) -> None:
        gvk = event.gvk
        with self._lock:
            if _is(gvk, POD_NETWORK, POD_NETWORK_TYPE.group):
                self._drop_pod_network(event.name)
            elif _is(gvk, NETWORK_CLASS, NETWORK_CLASS_TYPE.group):
                self._drop_network_class(event.name)
            elif _is(gvk, RESOURCE_SLICE, RESOURCE_SLICE_TYPE.group):
                self._drop_slice(event.name)
            elif _is(gvk, RESOURCE_CLAIM, RESOURCE_CLAIM_TYPE.group):
                self._drop_claim(object_key(event.name, event.namespace))
            elif _is(gvk, CUSTOM_RESOURCE_DEFINITION, CRD_GROUP):
                self._drop_crd(event.name)
            else:
                self._drop_network_object(gvk, object_key(event.name, event.namespace))

    def on_kind_scope(self, event: KindScopeUpsert) -> None:
        with self._lock:
            current = self._snapshot
            if current.kind_scopes.get(event.gvk) == event.namespaced:
                return
            scopes = dict(current.kind_scopes)
            scopes[event.gvk] = event.namespaced
            self._publish(kind_scopes=_frozen(scopes))
        LOG.debug("kind %s namespaced=%s", event.gvk, event.namespaced)

    # ------------------------------------------------------------------
    # Index maintenance (caller holds the lock)
    # ------------------------------------------------------------------
    def _publish(self, **changes) -> None:
        current = self._snapshot
        self._snapshot = replace(current, sequence=current.sequence + 1, **changes)

    @staticmethod
    def _unchanged(stored, incoming) -> bool:
        return (
            stored is not None
            and bool(incoming.resource_version)
            and stored.resource_version == incoming.resource_version
        )

    def _put_pod_network(self, network: PodNetwork) -> None:
        current = self._snapshot
        if self._unchanged(current.pod_networks.get(network.name), network):
            return
        networks = dict(current.pod_networks)
        networks[network.name] = network
        self._publish(pod_networks=_frozen(networks))

    def _drop_pod_network(self, name: str) -> None:
        current = self._snapshot
        if name not in current.pod_networks:
            return
        networks = dict(current.pod_networks)
        del networks[name]
        self._publish(pod_networks=_frozen(networks))

    def _put_network_class(self, network_class: NetworkClass) -> None:
        current = self._snapshot
        stored = current.network_classes.get(network_class.name)
        if self._unchanged(stored, network_class):
            return
        by_kind: Mapping = current.classes_by_kind
        if stored is not None and stored.target != network_class.target:
            # Classifications are immutable; a changed target means the
            # object was recreated between two observed events.
            LOG.warning(
                "NetworkClass %s target changed from %s to %s",
                network_class.name,
                stored.target,
                network_class.target,
            )
            by_kind = _index_remove(by_kind, stored.target, stored.name)
        classes = dict(current.network_classes)
        classes[network_class.name] = network_class
        self._publish(
            network_classes=_frozen(classes),
            classes_by_kind=_frozen(_index_add(by_kind, network_class.target, network_class.name)),
        )

    def _drop_network_class(self, name: str) -> None:
        current = self._snapshot
        stored = current.network_classes.get(name)
        if stored is None:
            return
        if name not in current.classes_by_kind.get(stored.target, frozenset()):
            raise StoreCorrupted(f"NetworkClass {name} missing from kind index")
        classes = dict(current.network_classes)
        del classes[name]
        self._publish(
            network_classes=_frozen(classes),
            classes_by_kind=_frozen(_index_remove(current.classes_by_kind, stored.target, name)),
        )

    def _put_slice(self, resource_slice: ResourceSlice) -> None:
        current = self._snapshot
        stored = current.slices.get(resource_slice.name)
        if self._unchanged(stored, resource_slice):
            return
        by_pool: Mapping = current.slices_by_pool
        if stored is not None:
            by_pool = _index_remove(by_pool, (stored.driver, stored.pool), stored.name)
        slices = dict(current.slices)
        slices[resource_slice.name] = resource_slice
        pool_key = (resource_slice.driver, resource_slice.pool)
        self._publish(
            slices=_frozen(slices),
            slices_by_pool=_frozen(_index_add(by_pool, pool_key, resource_slice.name)),
        )

    def _drop_slice(self, name: str) -> None:
        current = self._snapshot
        stored = current.slices.get(name)
        if stored is None:
            return
        pool_key = (stored.driver, stored.pool)
        if name not in current.slices_by_pool.get(pool_key, frozenset()):
            raise StoreCorrupted(f"ResourceSlice {name} missing from pool index")
        slices = dict(current.slices)
        del slices[name]
        self._publish(
            slices=_frozen(slices),
            slices_by_pool=_frozen(_index_remove(current.slices_by_pool, pool_key, name)),
        )

    def _put_claim(self, claim: ResourceClaim) -> None:
        current = self._snapshot
        stored = current.claims.get(claim.key)
        if self._unchanged(stored, claim):
            return
        by_pool: Mapping = current.claims_by_pool
        if stored is not None:
            for pool_key in stored.pools():
                by_pool = _index_remove(by_pool, pool_key, stored.key)
        for pool_key in claim.pools():
            by_pool = _index_add(by_pool, pool_key, claim.key)
        claims = dict(current.claims)
        claims[claim.key] = claim
        self._publish(claims=_frozen(claims), claims_by_pool=_frozen(by_pool))

    def _drop_claim(self, key: str) -> None:
        current = self._snapshot
        stored = current.claims.get(key)
        if stored is None:
            return
        by_pool: Mapping = current.claims_by_pool
        for pool_key in stored.pools():
            by_pool = _index_remove(by_pool, pool_key, key)
        claims = dict(current.claims)
        del claims[key]
        self._publish(claims=_frozen(claims), claims_by_pool=_frozen(by_pool))

    def _put_crd(self, crd: CustomResourceDefinition) -> None:
        current = self._snapshot
        scopes = dict(current.kind_scopes)
        for gvk in current.crd_kinds.get(crd.name, ()):
            scopes.pop(gvk, None)
        kinds = tuple(crd.kinds())
        for gvk in kinds:
            scopes[gvk] = crd.namespaced
        crd_kinds = dict(current.crd_kinds)
        crd_kinds[crd.name] = kinds
        self._publish(kind_scopes=_frozen(scopes), crd_kinds=_frozen(crd_kinds))

    def _drop_crd(self, name: str) -> None:
        current = self._snapshot
        if name not in current.crd_kinds:
            return
        scopes = dict(current.kind_scopes)
        for gvk in current.crd_kinds[name]:
            scopes.pop(gvk, None)
        crd_kinds = dict(current.crd_kinds)
        del crd_kinds[name]
        self._publish(kind_scopes=_frozen(scopes), crd_kinds=_frozen(crd_kinds))

    def _put_network_object(self, network_object: NetworkObject) -> None:
        current = self._snapshot
        objects = dict(current.network_objects.get(network_object.gvk, _EMPTY))
        if self._unchanged(objects.get(network_object.key), network_object):
            return
        objects[network_object.key] = network_object
        by_kind = dict(current.network_objects)
        by_kind[network_object.gvk] = _frozen(objects)
        self._publish(network_objects=_frozen(by_kind))

    def _drop_network_object(self, gvk: GroupVersionKind, key: str) -> None:
        current = self._snapshot
        objects = dict(current.network_objects.get(gvk, _EMPTY))
        if key not in objects:
            return
        del objects[key]
        by_kind = dict(current.network_objects)
        if objects:
            by_kind[gvk] = _frozen(objects)
        else:
            del by_kind[gvk]
        self._publish(network_objects=_frozen(by_kind))


def snapshot_from_objects(
    objects: Iterable[Mapping],
    kind_scopes: Optional[Mapping[GroupVersionKind, bool]] = None,
) -> Snapshot:
    """Build a one-off snapshot from an iterable of object dictionaries.

    Used by the conformance tooling when replaying a recorded cluster state.
    """

    store = NetworkStore()
    for gvk, namespaced in (kind_scopes or {}).items():
        store.on_kind_scope(KindScopeUpsert(gvk, namespaced))
    for obj in objects:
        store.on_upsert(ObjectUpsert(obj))
    return store.snapshot()
