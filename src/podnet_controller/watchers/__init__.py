"""Watchers feeding cluster events into the handler registry."""

from .file import FileClusterWatcher  # noqa: F401
from .kube import KubernetesWatcher  # noqa: F401

__all__ = ["FileClusterWatcher", "KubernetesWatcher"]
