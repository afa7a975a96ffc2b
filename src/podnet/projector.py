"""Project resolved network identities into ResourceClaim status."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from . import attributes as attrs
from .client import ObjectClient
from .conditions import Clock, set_condition, utcnow
from .exceptions import ConflictError, NotFoundError, ProjectionError, ResolutionError
from .model import (
    RESOURCE_CLAIM_TYPE,
    AllocatedDeviceStatus,
    AllocationResult,
    Condition,
    ResourceClaim,
)
from .resolver import DeviceResolver, Resolution
from .store import Snapshot

LOG = logging.getLogger(__name__)

_RESOLUTION_KEYS = (attrs.POD_NETWORK, attrs.NETWORK_CLASS, attrs.POD_NETWORK_NAMESPACE)


@dataclass
class Projection:
    """Result of projecting one claim against a snapshot."""

    devices: Tuple[AllocatedDeviceStatus, ...]
    changed: bool
    resolved: Dict[str, Resolution] = field(default_factory=dict)
    failures: List[ResolutionError] = field(default_factory=list)


class ClaimStatusProjector:
    """Attach resolved network references to ``status.devices[]`` entries.

    Policy when a previously resolved device stops resolving (slice deleted,
    attribute removed): the projected reference is kept as last known and
    the entry's ``NetworkResolved`` condition flips to ``False`` carrying the
    failure reason. Nothing is erased from a bound claim.

    Parameters
    ----------
    drivers:
        DRA driver names whose devices are network attachments. Devices of
        other drivers are left alone. An empty set means every driver.
    """

    def __init__(
        self,
        client: ObjectClient,
        resolver: Optional[DeviceResolver] = None,
        *,
        drivers: Iterable[str] = (),
        conflict_retries: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self._client = client
        self._resolver = resolver or DeviceResolver()
        self._drivers: FrozenSet[str] = frozenset(drivers)
        self._conflict_retries = conflict_retries
        self._clock = clock

    def handles(self, result: AllocationResult) -> bool:
        return not self._drivers or result.driver in self._drivers

    # ------------------------------------------------------------------
    # Pure projection
    # ------------------------------------------------------------------
    def project(self, claim: ResourceClaim, snapshot: Snapshot) -> Projection:
        devices = list(claim.devices)
        projection = Projection(devices=claim.devices, changed=False)

        for result in claim.allocation:
            if not self.handles(result):
                continue
            device_id = result.device_id
            index = next((i for i, d in enumerate(devices) if d.device_id == device_id), None)
            entry = (
                devices[index]
                if index is not None
                else AllocatedDeviceStatus(driver=result.driver, pool=result.pool, device=result.device)
            )

            try:
                resolution = self._resolver.resolve_in(snapshot, device_id)
            except ResolutionError as exc:
                LOG.debug("claim %s: device %s unresolved: %s", claim.key, device_id, exc)
                projection.failures.append(exc)
                updated = self._mark(entry, attrs.STATUS_FALSE, exc.reason, exc.message)
            else:
                if isinstance(entry.data, Mapping):
                    projection.resolved[str(device_id)] = resolution
                    updated = self._annotate(entry, resolution)
                else:
                    # A driver payload that is not an object has no room for
                    # the reference; it is left exactly as reported.
                    LOG.warning(
                        "claim %s: device %s resolves to %s but its status data is a %s",
                        claim.key, device_id, resolution, type(entry.data).__name__,
                    )
                    updated = self._mark(
                        entry,
                        attrs.STATUS_FALSE,
                        attrs.REASON_DATA_NOT_OBJECT,
                        f"status data is not an object; cannot record {resolution}",
                    )

            if index is None:
                devices.append(updated)
                projection.changed = True
            elif updated.to_dict() != entry.to_dict():
                devices[index] = updated
                projection.changed = True

        projection.devices = tuple(devices)
        return projection

    def _annotate(self, entry: AllocatedDeviceStatus, resolution: Resolution) -> AllocatedDeviceStatus:
        data = {k: v for k, v in entry.data.items() if k not in _RESOLUTION_KEYS}
        data.update(resolution.as_data())
        entry = replace(entry, data=data)
        return self._mark(entry, attrs.STATUS_TRUE, attrs.REASON_RESOLVED, f"resolved to {resolution}")

    def _mark(self, entry: AllocatedDeviceStatus, status: str, reason: str, message: str) -> AllocatedDeviceStatus:
        condition = Condition(
            type=attrs.CONDITION_NETWORK_RESOLVED,
            status=status,
            reason=reason,
            message=message,
        )
        conditions, changed = set_condition(entry.conditions, condition, clock=self._clock, limit=None)
        return replace(entry, conditions=conditions) if changed else entry

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------
    def reconcile(self, key: str, snapshot: Snapshot) -> Optional[Projection]:
        """Project the claim ``key`` (``namespace/name``) and persist changes.

        Raises :class:`ProjectionError` after writing whatever could be
        resolved when at least one device failed, so the claim is retried.
        """

        claim = snapshot.claim(key)
        if claim is None:
            LOG.debug("ResourceClaim %s no longer exists; nothing to do", key)
            return None

        for attempt in range(self._conflict_retries + 1):
            projection = self.project(claim, snapshot)
            if not projection.changed:
                break
            try:
                self._client.replace_status(
                    RESOURCE_CLAIM_TYPE, claim.with_devices(projection.devices).to_dict()
                )
            except ConflictError:
                LOG.debug("conflict writing ResourceClaim %s (attempt %d); re-reading", key, attempt + 1)
                try:
                    claim = ResourceClaim.from_dict(
                        self._client.get(RESOURCE_CLAIM_TYPE, claim.name, claim.namespace)
                    )
                except NotFoundError:
                    LOG.debug("ResourceClaim %s deleted during reconcile", key)
                    return None
                continue
            except NotFoundError:
                LOG.debug("ResourceClaim %s deleted before status write; discarding", key)
                return None
            for device, resolution in projection.resolved.items():
                LOG.info("ResourceClaim %s: device %s attached to %s", key, device, resolution)
            break
        else:
            raise ConflictError(
                f"ResourceClaim {key}: giving up after {self._conflict_retries + 1} conflicting writes"
            )

        if projection.failures:
            raise ProjectionError(key, projection.failures)
        return projection
