"""Pod network identity and attachment resolution for DRA-based clusters.

This package hosts the cluster-independent core of the podnet controller:

* a readiness state machine that authors the ``Ready`` condition of
  cluster-scoped ``PodNetwork`` objects;
* a resolver mapping a device bound to a ``ResourceClaim`` back to the
  network identity and ``NetworkClass`` it was advertised for;
* a projector writing that resolution into the claim status; and
* a copy-on-write store, fed by watch events, that all of the above read
  from.

Everything here is pure Python and talks to the API server only through
:class:`podnet.client.ObjectClient`, so the logic can be exercised against
the in-memory cluster in tests and lab setups.
"""

from .events import KindScopeUpsert, ObjectDelete, ObjectUpsert  # noqa: F401
from .projector import ClaimStatusProjector  # noqa: F401
from .readiness import NetworkState, ReadinessReconciler  # noqa: F401
from .registry import HandlerRegistry  # noqa: F401
from .resolver import DeviceResolver, Resolution  # noqa: F401
from .store import NetworkStore, Snapshot  # noqa: F401

__all__ = [
    "ClaimStatusProjector",
    "DeviceResolver",
    "HandlerRegistry",
    "KindScopeUpsert",
    "NetworkState",
    "NetworkStore",
    "ObjectDelete",
    "ObjectUpsert",
    "ReadinessReconciler",
    "Resolution",
    "Snapshot",
]
