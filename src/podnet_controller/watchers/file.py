"""File-based cluster state watcher.

Replays a recorded cluster state (YAML or JSON manifests, a single file or a
directory of them) into a :class:`~podnet.client.MemoryCluster`. The file is
polled; objects that appear or change are applied, objects that disappear
are deleted, which in turn publishes the matching watch events.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Event, Thread
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from podnet.client import MemoryCluster
from podnet.exceptions import NotFoundError, StoreCorrupted

LOG = logging.getLogger(__name__)

_SUFFIXES = (".yaml", ".yml", ".json")

ObjectKey = Tuple[str, str, Optional[str], str]


def _expand(document: Any) -> Iterable[Mapping[str, Any]]:
    if document is None:
        return
    if isinstance(document, list):
        for item in document:
            yield from _expand(item)
        return
    if not isinstance(document, Mapping):
        raise ValueError(f"expected a mapping, got {type(document).__name__}")
    if document.get("kind") == "List" or (
        "items" in document and "metadata" not in document
    ):
        for item in document.get("items") or []:
            yield from _expand(item)
        return
    yield document


def load_objects(path: Path) -> List[Dict[str, Any]]:
    """Load every object from ``path`` (file or directory of manifests)."""

    path = Path(path)
    files = sorted(p for p in path.iterdir() if p.suffix in _SUFFIXES) if path.is_dir() else [path]
    objects: List[Dict[str, Any]] = []
    for manifest in files:
        text = manifest.read_text()
        if manifest.suffix == ".json":
            documents: Iterable[Any] = [json.loads(text)]
        else:
            documents = yaml.safe_load_all(text)
        for document in documents:
            for obj in _expand(document):
                if not (obj.get("metadata") or {}).get("name") or not obj.get("kind"):
                    raise ValueError(f"{manifest}: every object needs kind and metadata.name")
                objects.append(dict(obj))
    return objects


def object_identity(obj: Mapping[str, Any]) -> ObjectKey:
    metadata = obj.get("metadata") or {}
    return (
        str(obj.get("apiVersion", "")),
        str(obj.get("kind", "")),
        metadata.get("namespace") or None,
        str(metadata["name"]),
    )


class FileClusterWatcher(Thread):
    """Poll a recorded cluster state and mirror it into ``cluster``."""

    def __init__(
        self,
        cluster: MemoryCluster,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True, name=f"file-watcher:{path}")
        self._cluster = cluster
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event
        self._state: Dict[ObjectKey, Dict[str, Any]] = {}
        self.fatal: Optional[BaseException] = None

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except StoreCorrupted as exc:
                LOG.critical("local store corrupted while replaying %s: %s", self._path, exc)
                self.fatal = exc
                self._stop_event.set()
                return
            except Exception:  # pragma: no cover - logged below
                LOG.exception("file watcher encountered an error")
            self._stop_event.wait(self._interval)

    def poll(self) -> None:
        if not self._path.exists():
            LOG.debug("cluster state %s does not exist yet", self._path)
            return

        try:
            objects = load_objects(self._path)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            LOG.warning("failed to parse cluster state %s: %s", self._path, exc)
            return
        except ValueError as exc:
            LOG.warning("invalid cluster state %s: %s", self._path, exc)
            return

        desired = {object_identity(obj): obj for obj in objects}

        for key, obj in desired.items():
            if self._state.get(key) != obj:
                LOG.debug("%s %s changed in %s", key[1], key[3], self._path)
                try:
                    self._cluster.apply(obj)
                except ValueError as exc:
                    LOG.warning("skipping %s %s: %s", key[1], key[3], exc)

        for key in set(self._state) - set(desired):
            api_version, kind, namespace, name = key
            LOG.debug("%s %s removed from %s", kind, name, self._path)
            try:
                self._cluster.delete(api_version, kind, name, namespace)
            except NotFoundError:
                LOG.debug("%s %s was already gone", kind, name)

        self._state = desired
