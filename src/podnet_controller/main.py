"""Entry point for the standalone podnet controller."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event
from typing import List, Optional

from podnet.client import MemoryCluster
from podnet.events import KindScopeUpsert
from podnet.model import CRD_TYPE, NETWORK_CLASS_TYPE, CustomResourceDefinition, NetworkClass
from podnet.registry import HandlerRegistry

from .config import PodNetConfig, WatcherConfig, load_config
from .controller import Controller
from .kube import WATCHED_TYPES, KubernetesObjectClient, iter_network_types, load_kube_config
from .watchers import FileClusterWatcher, KubernetesWatcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _file_watchers(
    config: PodNetConfig, cluster: MemoryCluster, stop_event: Event
) -> List[FileClusterWatcher]:
    watchers = []
    for watcher_cfg in config.watchers:
        watcher = FileClusterWatcher(
            cluster=cluster,
            path=watcher_cfg.path,
            interval=watcher_cfg.interval,
            stop_event=stop_event,
        )
        # Perform an initial poll so the controller starts from a full view
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll failed for watcher %s", watcher_cfg.path)
        watchers.append(watcher)
    return watchers


def _kube_watchers(
    watcher_cfg: WatcherConfig,
    kube: KubernetesObjectClient,
    registry: HandlerRegistry,
    stop_event: Event,
) -> List[KubernetesWatcher]:
    crds = [CustomResourceDefinition.from_dict(o) for o in kube.list_objects(CRD_TYPE)]
    classes = [NetworkClass.from_dict(o) for o in kube.list_objects(NETWORK_CLASS_TYPE)]
    resources = list(WATCHED_TYPES) + iter_network_types(crds, classes)
    timeout = int(watcher_cfg.options.get("timeout_seconds", 300))

    watchers = []
    for resource in resources:
        watcher = KubernetesWatcher(kube, resource, registry, stop_event, timeout_seconds=timeout)
        watcher.relist()
        watchers.append(watcher)
    LOG.info("watching %s", ", ".join(f"{r.plural}.{r.group}" for r in resources))
    return watchers


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the podnet controller")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/podnet/controller.yaml"),
        help="Path to the controller configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)
    stop_event = Event()
    registry = HandlerRegistry()

    kube_cfg = next((w for w in config.watchers if w.type == "kubernetes"), None)
    if kube_cfg is not None:
        load_kube_config(kube_cfg.options.get("kubeconfig"))
        client = KubernetesObjectClient()
    else:
        client = MemoryCluster(registry)

    controller = Controller(config.controller, client, registry=registry)
    for scope in config.kinds:
        registry.handle(KindScopeUpsert(scope.gvk, scope.namespaced))

    if kube_cfg is not None:
        watchers = _kube_watchers(kube_cfg, client, registry, stop_event)
    else:
        watchers = _file_watchers(config, client, stop_event)
    if not watchers:
        LOG.warning("no watchers configured; controller will idle")

    controller.start(stop_event)
    for watcher in watchers:
        watcher.start()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    controller.stop()
    for watcher in watchers:
        if isinstance(watcher, KubernetesWatcher):
            watcher.stop()
        watcher.join(timeout=5.0)
    controller.join(timeout=5.0)

    fatal = next((w.fatal for w in watchers if w.fatal), None)
    if fatal is not None:
        LOG.error("podnet controller stopped after a fatal error: %s", fatal)
        return 1
    LOG.info("podnet controller stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
