"""YAML configuration loader for the podnet controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml

from podnet.attributes import DEFAULT_DOMAIN
from podnet.model import GroupVersionKind

WATCHER_TYPES = ("file", "kubernetes")


@dataclass
class ControllerConfig:
    attribute_domain: str = DEFAULT_DOMAIN
    drivers: Sequence[str] = ()
    workers: int = 2
    conflict_retries: int = 5
    resync_interval: float = 300.0
    backoff_base: float = 0.5
    backoff_max: float = 60.0
    failure_threshold: int = 10


@dataclass
class WatcherConfig:
    type: str
    path: Optional[Path] = None
    interval: float = 5.0
    options: dict = field(default_factory=dict)


@dataclass(frozen=True)
class KindScope:
    gvk: GroupVersionKind
    namespaced: bool


@dataclass
class PodNetConfig:
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    watchers: Sequence[WatcherConfig] = field(default_factory=list)
    kinds: Sequence[KindScope] = field(default_factory=list)


def _positive(value, name: str, cast=float):
    converted = cast(value)
    if converted <= 0:
        raise ValueError(f"'{name}' must be positive")
    return converted


def _parse_controller(section: dict) -> ControllerConfig:
    if not isinstance(section, dict):
        raise ValueError("'controller' section must be a mapping")
    drivers = section.get("drivers", [])
    if not isinstance(drivers, list):
        raise ValueError("'drivers' must be a list of DRA driver names")

    defaults = ControllerConfig()
    config = ControllerConfig(
        attribute_domain=str(section.get("attribute_domain", defaults.attribute_domain)),
        drivers=tuple(str(d) for d in drivers),
        workers=_positive(section.get("workers", defaults.workers), "workers", int),
        conflict_retries=int(section.get("conflict_retries", defaults.conflict_retries)),
        resync_interval=_positive(
            section.get("resync_interval", defaults.resync_interval), "resync_interval"
        ),
        backoff_base=_positive(section.get("backoff_base", defaults.backoff_base), "backoff_base"),
        backoff_max=_positive(section.get("backoff_max", defaults.backoff_max), "backoff_max"),
        failure_threshold=_positive(
            section.get("failure_threshold", defaults.failure_threshold), "failure_threshold", int
        ),
    )
    if config.resync_interval < 1.0:
        raise ValueError("'resync_interval' must be at least one second")
    if config.conflict_retries < 0:
        raise ValueError("'conflict_retries' cannot be negative")
    if config.backoff_max < config.backoff_base:
        raise ValueError("'backoff_max' must not be lower than 'backoff_base'")
    return config


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        watcher_type = str(entry["type"])
        if watcher_type not in WATCHER_TYPES:
            raise ValueError(f"unsupported watcher type '{watcher_type}'")
        options = entry.get("options", {})
        if not isinstance(options, dict):
            raise ValueError("watcher 'options' must be a mapping if provided")
        path = entry.get("path")
        if watcher_type == "file" and not path:
            raise ValueError("file watcher requires a 'path'")
        watchers.append(
            WatcherConfig(
                type=watcher_type,
                path=Path(path) if path else None,
                interval=float(entry.get("interval", entry.get("poll_interval", 5.0))),
                options=options,
            )
        )
    return watchers


def parse_kind(entry: dict) -> KindScope:
    try:
        return KindScope(
            gvk=GroupVersionKind(
                group=str(entry.get("group", "")),
                version=str(entry["version"]),
                kind=str(entry["kind"]),
            ),
            namespaced=bool(entry.get("namespaced", False)),
        )
    except KeyError as exc:
        raise ValueError(f"kind entry missing {exc.args[0]!r}") from None


def load_config(path: Path) -> PodNetConfig:
    data = yaml.safe_load(path.read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Controller configuration must be a mapping")

    controller = _parse_controller(data.get("controller") or {})

    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")
    watchers = _parse_watchers(watchers_section)
    if len({w.type for w in watchers}) > 1:
        raise ValueError("file and kubernetes watchers cannot be mixed")

    kinds_section = data.get("kinds", [])
    if not isinstance(kinds_section, list):
        raise ValueError("'kinds' section must be a list")
    kinds = [parse_kind(entry) for entry in kinds_section]

    return PodNetConfig(controller=controller, watchers=watchers, kinds=kinds)
