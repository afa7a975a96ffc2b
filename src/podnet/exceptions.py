"""Error taxonomy shared by the reconcilers."""

from __future__ import annotations

from typing import Sequence


class PodNetError(Exception):
    """Base class for every error raised by :mod:`podnet`."""


class ValidationError(PodNetError):
    """An object was rejected at admission time."""


class ResolutionError(PodNetError):
    """A bound device could not be mapped back to its network.

    ``reason`` is the CamelCase code reported on conditions.
    """

    reason = "ResolutionFailed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AttributeMissing(ResolutionError):
    reason = "AttributeMissing"


class NamespaceRequired(ResolutionError):
    reason = "NamespaceRequired"


class DeviceNotFound(ResolutionError):
    reason = "DeviceNotFound"


class AmbiguousDevice(ResolutionError):
    reason = "AmbiguousDevice"


class ClassificationNotFound(ResolutionError):
    reason = "ClassificationNotFound"


class KindScopeUnknown(ResolutionError):
    reason = "KindScopeUnknown"


class ProjectionError(PodNetError):
    """One or more devices of a claim failed to resolve."""

    def __init__(self, claim: str, failures: Sequence[ResolutionError]) -> None:
        reasons = ", ".join(f"{f.reason}: {f.message}" for f in failures)
        super().__init__(f"claim {claim} has unresolved devices ({reasons})")
        self.claim = claim
        self.failures = list(failures)


class ConflictError(PodNetError):
    """A conditional write targeted a stale resourceVersion."""


class NotFoundError(PodNetError):
    """The object targeted by a read or write no longer exists."""


class ConditionLimitExceeded(PodNetError):
    """The Ready condition cannot be added without exceeding the cap."""


class StoreCorrupted(PodNetError):
    """The local store violated one of its invariants; restart required."""


class SelectorError(PodNetError):
    """A claim selector expression could not be parsed or evaluated."""
