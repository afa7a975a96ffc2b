"""podnet controller runtime helpers."""

from .config import PodNetConfig, load_config  # noqa: F401

__all__ = [
    "PodNetConfig",
    "load_config",
]
