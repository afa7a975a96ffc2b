"""Controller wiring: store, queues, reconcilers and worker threads."""

from __future__ import annotations

import logging
from threading import Event, Lock, Thread
from typing import Callable, Dict, List, Optional, Tuple

from podnet import attributes as attrs
from podnet.client import ObjectClient
from podnet.events import KindScopeUpsert, ObjectDelete, ObjectUpsert
from podnet.exceptions import PodNetError
from podnet.model import (
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
    ResourceSlice,
    object_key,
)
from podnet.projector import ClaimStatusProjector
from podnet.readiness import ReadinessReconciler
from podnet.registry import EventHandler, HandlerRegistry
from podnet.resolver import DeviceResolver
from podnet.store import NetworkStore, Snapshot

from .config import ControllerConfig
from .workqueue import ExponentialBackoff, RateLimitingQueue

LOG = logging.getLogger(__name__)

POD_NETWORK_QUEUE = "podnetworks"
CLAIM_QUEUE = "resourceclaims"


def _is(gvk: GroupVersionKind, kind: str, group: str) -> bool:
    return gvk.kind == kind and gvk.group == group


class QueueFeeder(EventHandler):
    """Translate watch events into reconcile keys.

    Registered after the store so that the snapshot a worker reads already
    contains the change that caused the key to be queued.
    """

    def __init__(self, store: NetworkStore, networks: RateLimitingQueue, claims: RateLimitingQueue) -> None:
        self._store = store
        self._networks = networks
        self._claims = claims
        self._slice_pools: Dict[str, Tuple[str, str]] = {}
        self._lock = Lock()

    def on_upsert(self, event: ObjectUpsert) -> None:
        gvk = event.gvk
        if _is(gvk, POD_NETWORK, POD_NETWORK_TYPE.group):
            self._networks.add(event.name)
        elif _is(gvk, RESOURCE_CLAIM, RESOURCE_CLAIM_TYPE.group):
            claim = self._store.snapshot().claim(object_key(event.name, event.namespace or "default"))
            if claim is not None and claim.allocation:
                self._claims.add(claim.key)
        elif _is(gvk, RESOURCE_SLICE, RESOURCE_SLICE_TYPE.group):
            try:
                resource_slice = ResourceSlice.from_dict(event.obj)
            except ValueError:
                return
            pool = (resource_slice.driver, resource_slice.pool)
            with self._lock:
                previous = self._slice_pools.get(resource_slice.name)
                self._slice_pools[resource_slice.name] = pool
            self._enqueue_pool(pool)
            if previous is not None and previous != pool:
                self._enqueue_pool(previous)
        elif _is(gvk, NETWORK_CLASS, NETWORK_CLASS_TYPE.group):
            self.enqueue_claims()
        elif _is(gvk, CUSTOM_RESOURCE_DEFINITION, CRD_GROUP):
            self.enqueue_claims()

    def on_delete(self, event: ObjectDelete) -> None:
        gvk = event.gvk
        if _is(gvk, POD_NETWORK, POD_NETWORK_TYPE.group):
            self._networks.add(event.name)
        elif _is(gvk, RESOURCE_SLICE, RESOURCE_SLICE_TYPE.group):
            with self._lock:
                pool = self._slice_pools.pop(event.name, None)
            if pool is not None:
                self._enqueue_pool(pool)
        elif _is(gvk, NETWORK_CLASS, NETWORK_CLASS_TYPE.group):
            self.enqueue_claims()
        elif _is(gvk, CUSTOM_RESOURCE_DEFINITION, CRD_GROUP):
            self.enqueue_claims()

    def on_kind_scope(self, event: KindScopeUpsert) -> None:
        self.enqueue_claims()

    def enqueue_networks(self) -> None:
        for name in self._store.snapshot().pod_networks:
            self._networks.add(name)

    def enqueue_claims(self) -> None:
        for key, claim in self._store.snapshot().claims.items():
            if claim.allocation:
                self._claims.add(key)

    def _enqueue_pool(self, pool: Tuple[str, str]) -> None:
        for key in self._store.snapshot().claims_for_pool(*pool):
            self._claims.add(key)


class Controller:
    """Run the readiness reconciler and claim projector over queued keys."""

    def __init__(
        self,
        config: ControllerConfig,
        client: ObjectClient,
        *,
        registry: Optional[HandlerRegistry] = None,
        store: Optional[NetworkStore] = None,
    ) -> None:
        self._config = config
        self._client = client
        self.store = store or NetworkStore()
        self.registry = registry or HandlerRegistry()
        self.readiness = ReadinessReconciler(client, conflict_retries=config.conflict_retries)
        self.projector = ClaimStatusProjector(
            client,
            DeviceResolver(config.attribute_domain),
            drivers=config.drivers,
            conflict_retries=config.conflict_retries,
        )
        self.queues: Dict[str, RateLimitingQueue] = {
            name: RateLimitingQueue(name, ExponentialBackoff(config.backoff_base, config.backoff_max))
            for name in (POD_NETWORK_QUEUE, CLAIM_QUEUE)
        }
        self._feeder = QueueFeeder(self.store, self.queues[POD_NETWORK_QUEUE], self.queues[CLAIM_QUEUE])
        self.registry.register("store", self.store)
        self.registry.register("queues", self._feeder)

        self._handlers: Dict[str, Callable[[str, Snapshot], object]] = {
            POD_NETWORK_QUEUE: self.readiness.reconcile,
            CLAIM_QUEUE: self.projector.reconcile,
        }
        self._threads: List[Thread] = []
        self._stop_event: Optional[Event] = None

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    def process_next(self, queue_name: str, timeout: Optional[float] = None) -> bool:
        """Process one key from ``queue_name``; ``False`` if nothing was ready."""

        queue = self.queues[queue_name]
        key = queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self._handlers[queue_name](key, self.store.snapshot())
        except PodNetError as exc:
            self._retry(queue, key, exc)
        except Exception as exc:
            LOG.exception("unexpected error reconciling %s %s", queue_name, key)
            self._retry(queue, key, exc)
        else:
            queue.forget(key)
        finally:
            queue.done(key)
        return True

    def _retry(self, queue: RateLimitingQueue, key: str, exc: BaseException) -> None:
        delay = queue.add_rate_limited(key)
        failures = queue.num_requeues(key)
        if failures >= self._config.failure_threshold:
            LOG.error(
                "%s %s keeps failing (%d attempts), retrying in %.1fs: %s",
                queue.name, key, failures, delay, exc,
            )
            try:
                announce = failures == self._config.failure_threshold
                self._report_failure(queue.name, key, exc, announce)
            except Exception:
                LOG.exception("could not report the failure of %s %s", queue.name, key)
        else:
            LOG.warning("%s %s failed, retrying in %.1fs: %s", queue.name, key, delay, exc)

    def _report_failure(self, queue_name: str, key: str, exc: BaseException, announce: bool) -> None:
        """Make a persistent failure visible on the object it concerns.

        PodNetworks get ``Ready=Unknown/ReconcileFailed`` when there is room
        for the condition. A Warning event is recorded once, when the
        failure count first reaches the threshold.
        """

        message = f"reconciliation keeps failing: {exc}"
        if queue_name == POD_NETWORK_QUEUE:
            resource, namespace, name = POD_NETWORK_TYPE, None, key
            self.readiness.report_failure(name, message)
        else:
            namespace, _, name = key.partition("/")
            resource = RESOURCE_CLAIM_TYPE
        if announce:
            self._client.record_event(resource, name, namespace, attrs.REASON_RECONCILE_FAILED, message)

    def drain(self, max_items: int = 1000) -> int:
        """Synchronously process every key that is ready right now."""

        processed = 0
        progress = True
        while progress and processed < max_items:
            progress = False
            for name in self.queues:
                if len(self.queues[name]) and self.process_next(name, timeout=0):
                    processed += 1
                    progress = True
        return processed

    def resync(self) -> None:
        LOG.debug("resyncing every PodNetwork and ResourceClaim")
        self._feeder.enqueue_networks()
        self._feeder.enqueue_claims()

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------
    def start(self, stop_event: Event) -> None:
        self._stop_event = stop_event
        for name in self.queues:
            for index in range(self._config.workers):
                thread = Thread(
                    target=self._worker, args=(name,), name=f"{name}-{index}", daemon=True
                )
                thread.start()
                self._threads.append(thread)
        resync = Thread(target=self._resync_loop, name="resync", daemon=True)
        resync.start()
        self._threads.append(resync)
        LOG.info(
            "controller started with %d worker(s) per queue (domain=%s)",
            self._config.workers,
            self._config.attribute_domain,
        )

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        for queue in self.queues.values():
            queue.shut_down()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def _worker(self, queue_name: str) -> None:
        queue = self.queues[queue_name]
        while not queue.shutting_down:
            self.process_next(queue_name, timeout=1.0)

    def _resync_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.wait(self._config.resync_interval):
            self.resync()
        self.stop()
