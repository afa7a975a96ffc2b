"""Watch event primitives consumed by the handler registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .model import GroupVersionKind


@dataclass(frozen=True)
class ObjectUpsert:
    """An object was added or modified.

    Watchers publish the full object every time so that handlers can
    recompute their state from scratch.
    """

    obj: Mapping[str, Any] = field(hash=False)

    @property
    def kind(self) -> str:
        return str(self.obj.get("kind", ""))

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version(str(self.obj.get("apiVersion", "")), self.kind)

    @property
    def name(self) -> str:
        return str((self.obj.get("metadata") or {}).get("name", ""))

    @property
    def namespace(self) -> Optional[str]:
        return (self.obj.get("metadata") or {}).get("namespace") or None


@dataclass(frozen=True)
class ObjectDelete:
    """Signals that an object is gone."""

    gvk: GroupVersionKind
    name: str
    namespace: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.gvk.kind


@dataclass(frozen=True)
class KindScopeUpsert:
    """Records whether objects of ``gvk`` live in a namespace."""

    gvk: GroupVersionKind
    namespaced: bool
