"""Readiness state machine for PodNetwork objects.

The lifecycle of a network identity is a small closed set of states::

    NotReady --(enabled, every gating condition True)--> Ready
    Ready    --(implementation reports InUse=True)-----> InUse
    any      --(spec.enabled=false)--------------------> Disabled
    Disabled --(spec.enabled=true)---------------------> NotReady / Ready

The state is never stored. It is derived from the object on every pass and
the ``Ready`` condition is rendered from it, so re-running the reconciler on
an unchanged object produces exactly the same condition and no write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import attributes as attrs
from .client import ObjectClient
from .conditions import Clock, gating, set_condition, utcnow
from .exceptions import ConditionLimitExceeded, ConflictError, NotFoundError
from .model import POD_NETWORK_TYPE, Condition, PodNetwork
from .store import Snapshot

LOG = logging.getLogger(__name__)


class NetworkState(Enum):
    NOT_READY = "NotReady"
    READY = "Ready"
    IN_USE = "InUse"
    DISABLED = "Disabled"


@dataclass(frozen=True)
class Assessment:
    """Outcome of evaluating a PodNetwork: its state and Ready condition."""

    state: NetworkState
    status: str
    reason: str
    message: str

    def condition(self, generation: int) -> Condition:
        return Condition(
            type=attrs.CONDITION_READY,
            status=self.status,
            reason=self.reason,
            message=self.message,
            observed_generation=generation,
        )


def assess(network: PodNetwork) -> Assessment:
    """Derive the lifecycle state of ``network``.

    ``enabled=false`` wins over everything else. Otherwise any gating
    condition reporting ``False`` makes the network not ready, any reporting
    ``Unknown`` keeps it pending, and the advisory ``InUse`` condition only
    refines an otherwise ready network.
    """

    if not network.enabled:
        return Assessment(
            NetworkState.DISABLED,
            attrs.STATUS_FALSE,
            attrs.REASON_DISABLED,
            "network is administratively disabled",
        )

    relevant = gating(network.conditions, attrs.NON_GATING_CONDITIONS)
    failed = sorted(c.type for c in relevant if c.status == attrs.STATUS_FALSE)
    if failed:
        return Assessment(
            NetworkState.NOT_READY,
            attrs.STATUS_FALSE,
            attrs.REASON_CONDITIONS_NOT_READY,
            f"conditions not ready: {', '.join(failed)}",
        )

    pending = sorted(c.type for c in relevant if c.status != attrs.STATUS_TRUE)
    if pending:
        return Assessment(
            NetworkState.NOT_READY,
            attrs.STATUS_UNKNOWN,
            attrs.REASON_PENDING,
            f"waiting for conditions: {', '.join(pending)}",
        )

    in_use = network.condition(attrs.CONDITION_IN_USE)
    state = (
        NetworkState.IN_USE
        if in_use is not None and in_use.status == attrs.STATUS_TRUE
        else NetworkState.READY
    )
    return Assessment(state, attrs.STATUS_TRUE, attrs.REASON_READY, "network is ready")


class ReadinessReconciler:
    """Author the ``Ready`` condition of PodNetwork objects.

    Implementation-authored conditions are never touched; only the ``Ready``
    entry is inserted or updated. Writes carry the resourceVersion the
    object was read at; on conflict the object is re-read and the pass is
    recomputed, up to ``conflict_retries`` times.
    """

    def __init__(
        self,
        client: ObjectClient,
        *,
        conflict_retries: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self._client = client
        self._conflict_retries = conflict_retries
        self._clock = clock

    def desired(self, network: PodNetwork) -> Optional[PodNetwork]:
        """Return ``network`` with an updated Ready condition, or ``None`` if unchanged."""

        assessment = assess(network)
        conditions, changed = set_condition(
            network.conditions,
            assessment.condition(network.generation),
            clock=self._clock,
        )
        if not changed:
            return None
        return network.with_conditions(conditions)

    def report_failure(self, name: str, message: str) -> bool:
        """Set ``Ready=Unknown/ReconcileFailed`` on the live object.

        Returns whether the object now carries that condition. Nothing is
        written when the object is gone or the write conflicts. A condition
        list with no room left for ``Ready`` is not touched either.
        """

        try:
            network = PodNetwork.from_dict(self._client.get(POD_NETWORK_TYPE, name))
            conditions, changed = set_condition(
                network.conditions,
                Condition(
                    type=attrs.CONDITION_READY,
                    status=attrs.STATUS_UNKNOWN,
                    reason=attrs.REASON_RECONCILE_FAILED,
                    message=message,
                    observed_generation=network.generation,
                ),
                clock=self._clock,
            )
            if changed:
                self._client.replace_status(POD_NETWORK_TYPE, network.with_conditions(conditions).to_dict())
        except (ConditionLimitExceeded, ConflictError, NotFoundError) as exc:
            LOG.debug("cannot mark PodNetwork %s as failing: %s", name, exc)
            return False
        if changed:
            LOG.warning("PodNetwork %s marked Ready=Unknown: %s", name, message)
        return True

    def reconcile(self, name: str, snapshot: Snapshot) -> Optional[NetworkState]:
        """Reconcile the PodNetwork ``name`` starting from ``snapshot``.

        Returns the derived state, or ``None`` if the object is gone.
        """

        network = snapshot.pod_network(name)
        if network is None:
            LOG.debug("PodNetwork %s no longer exists; nothing to do", name)
            return None

        for attempt in range(self._conflict_retries + 1):
            state = assess(network).state
            updated = self.desired(network)
            if updated is None:
                LOG.debug("PodNetwork %s already up to date (%s)", name, state.value)
                return state
            try:
                self._client.replace_status(POD_NETWORK_TYPE, updated.to_dict())
            except ConflictError:
                LOG.debug("conflict writing PodNetwork %s (attempt %d); re-reading", name, attempt + 1)
                try:
                    network = PodNetwork.from_dict(self._client.get(POD_NETWORK_TYPE, name))
                except NotFoundError:
                    LOG.debug("PodNetwork %s deleted during reconcile", name)
                    return None
                continue
            except NotFoundError:
                LOG.debug("PodNetwork %s deleted before status write; discarding", name)
                return None
            ready = updated.condition(attrs.CONDITION_READY)
            LOG.info(
                "PodNetwork %s is %s (Ready=%s/%s)",
                name,
                state.value,
                ready.status if ready else "",
                ready.reason if ready else "",
            )
            return state

        raise ConflictError(
            f"PodNetwork {name}: giving up after {self._conflict_retries + 1} conflicting writes"
        )
