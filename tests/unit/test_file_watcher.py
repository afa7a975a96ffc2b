import json
import time
from pathlib import Path
from threading import Event

import yaml

from podnet.client import MemoryCluster
from podnet.model import POD_NETWORK_TYPE, GroupVersionKind
from podnet.registry import HandlerRegistry
from podnet.store import NetworkStore
from podnet_controller.watchers.file import FileClusterWatcher, load_objects

import factories


def build_cluster():
    store = NetworkStore()
    registry = HandlerRegistry()
    registry.register("store", store)
    return MemoryCluster(registry), store


def test_load_objects_expands_lists_and_documents(tmp_path: Path):
    state = tmp_path / "state"
    state.mkdir()
    (state / "networks.yaml").write_text(
        yaml.safe_dump_all([factories.pod_network("blue"), factories.pod_network("red")])
    )
    (state / "classes.json").write_text(
        json.dumps({"kind": "List", "items": [factories.network_class("ovn", "k8s.ovn.org", "v1", "X")]})
    )
    (state / "notes.txt").write_text("ignored")

    objects = load_objects(state)

    assert sorted(o["metadata"]["name"] for o in objects) == ["blue", "ovn", "red"]


def test_file_watcher_mirrors_state(tmp_path: Path):
    state = tmp_path / "state.yaml"
    state.write_text(yaml.safe_dump_all([factories.pod_network("blue"), factories.pod_network("red")]))
    cluster, store = build_cluster()

    watcher = FileClusterWatcher(cluster=cluster, path=state, interval=0.1, stop_event=Event())
    watcher.poll()
    assert sorted(store.snapshot().pod_networks) == ["blue", "red"]

    state.write_text(yaml.safe_dump_all([factories.pod_network("blue", enabled=False)]))
    watcher.poll()

    assert sorted(store.snapshot().pod_networks) == ["blue"]
    assert store.snapshot().pod_network("blue").enabled is False


def test_status_written_by_controller_survives_replay(tmp_path: Path):
    state = tmp_path / "state.yaml"
    state.write_text(yaml.safe_dump(factories.pod_network("blue")))
    cluster, _ = build_cluster()
    watcher = FileClusterWatcher(cluster=cluster, path=state, interval=0.1, stop_event=Event())
    watcher.poll()

    live = cluster.get(POD_NETWORK_TYPE, "blue")
    live["status"] = {"conditions": [factories.condition("Ready", "True", "Ready")]}
    cluster.replace_status(POD_NETWORK_TYPE, live)
    watcher.poll()

    assert cluster.get(POD_NETWORK_TYPE, "blue")["status"]["conditions"][0]["status"] == "True"


def test_invalid_state_is_skipped(tmp_path: Path):
    state = tmp_path / "state.yaml"
    state.write_text(yaml.safe_dump(factories.pod_network("blue")))
    cluster, store = build_cluster()
    watcher = FileClusterWatcher(cluster=cluster, path=state, interval=0.1, stop_event=Event())
    watcher.poll()

    state.write_text("kind: PodNetwork\nmetadata: {}\n")
    watcher.poll()

    assert sorted(store.snapshot().pod_networks) == ["blue"]


def test_file_watcher_thread_publishes_updates(tmp_path: Path):
    state = tmp_path / "state.yaml"
    cluster, store = build_cluster()
    stop_event = Event()
    watcher = FileClusterWatcher(cluster=cluster, path=state, interval=0.05, stop_event=stop_event)
    watcher.start()
    try:
        state.write_text(yaml.safe_dump(factories.network_object("k8s.ovn.org/v1", "UserDefinedNetwork", "blue", "a")))
        udn = GroupVersionKind("k8s.ovn.org", "v1", "UserDefinedNetwork")
        deadline = time.time() + 2
        while time.time() < deadline and not store.snapshot().objects_of(udn):
            time.sleep(0.05)
        assert [o.key for o in store.snapshot().objects_of(udn)] == ["a/blue"]
    finally:
        stop_event.set()
        watcher.join(timeout=1)
