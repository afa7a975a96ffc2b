"""Kubernetes API access built on the official ``kubernetes`` client."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from podnet.client import ObjectClient
from podnet.exceptions import ConflictError, NotFoundError
from podnet.model import (
    CRD_TYPE,
    NETWORK_CLASS_TYPE,
    POD_NETWORK_TYPE,
    RESOURCE_CLAIM_TYPE,
    RESOURCE_SLICE_TYPE,
    CustomResourceDefinition,
    NetworkClass,
    ResourceType,
)

LOG = logging.getLogger(__name__)

WATCHED_TYPES = (CRD_TYPE, NETWORK_CLASS_TYPE, POD_NETWORK_TYPE, RESOURCE_SLICE_TYPE, RESOURCE_CLAIM_TYPE)
EVENT_SOURCE = "podnet-controller"


def load_kube_config(kubeconfig: Optional[str] = None) -> None:
    """Use the in-cluster service account, falling back to a kubeconfig."""

    if kubeconfig is None:
        try:
            config.load_incluster_config()
            LOG.info("using in-cluster Kubernetes configuration")
            return
        except ConfigException:
            LOG.debug("not running in a cluster; trying kubeconfig")
    config.load_kube_config(config_file=kubeconfig)


def _api_message(exc: client.ApiException) -> str:
    try:
        return json.loads(exc.body or "{}").get("message", exc.reason or "")
    except ValueError:
        return exc.reason or ""


def _with_kind(obj: Dict[str, Any], resource: ResourceType) -> Dict[str, Any]:
    # List responses omit apiVersion/kind on their items.
    obj.setdefault("apiVersion", resource.api_version)
    obj.setdefault("kind", resource.kind)
    return obj


class KubernetesObjectClient(ObjectClient):
    """:class:`ObjectClient` backed by ``CustomObjectsApi``.

    ``CustomObjectsApi`` only builds ``/apis/<group>/<version>/...`` paths,
    so it serves the built-in ``resource.k8s.io`` kinds as well as CRDs.
    Events are the exception and go through ``CoreV1Api``.
    """

    def __init__(
        self,
        api: Optional[client.CustomObjectsApi] = None,
        core: Optional[client.CoreV1Api] = None,
    ) -> None:
        self._api = api or client.CustomObjectsApi()
        self._core = core

    @property
    def api(self) -> client.CustomObjectsApi:
        return self._api

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            self._core = client.CoreV1Api()
        return self._core

    def get(self, resource: ResourceType, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        try:
            if resource.namespaced:
                obj = self._api.get_namespaced_custom_object(
                    group=resource.group,
                    version=resource.version,
                    namespace=namespace,
                    plural=resource.plural,
                    name=name,
                )
            else:
                obj = self._api.get_cluster_custom_object(
                    group=resource.group,
                    version=resource.version,
                    plural=resource.plural,
                    name=name,
                )
        except client.ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"{resource.kind} {name} not found") from exc
            raise
        return _with_kind(obj, resource)

    def replace_status(self, resource: ResourceType, obj: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        try:
            if resource.namespaced:
                result = self._api.replace_namespaced_custom_object_status(
                    group=resource.group,
                    version=resource.version,
                    namespace=metadata.get("namespace"),
                    plural=resource.plural,
                    name=name,
                    body=dict(obj),
                )
            else:
                result = self._api.replace_cluster_custom_object_status(
                    group=resource.group,
                    version=resource.version,
                    plural=resource.plural,
                    name=name,
                    body=dict(obj),
                )
        except client.ApiException as exc:
            if exc.status == 409:
                raise ConflictError(f"{resource.kind} {name}: {_api_message(exc)}") from exc
            if exc.status == 404:
                raise NotFoundError(f"{resource.kind} {name} not found") from exc
            raise
        return _with_kind(result, resource)

    def record_event(
        self,
        resource: ResourceType,
        name: str,
        namespace: Optional[str],
        reason: str,
        message: str,
        event_type: str = "Warning",
    ) -> None:
        # Events about cluster-scoped objects live in the default namespace.
        now = datetime.now(timezone.utc)
        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{name}."),
            involved_object=client.V1ObjectReference(
                api_version=resource.api_version,
                kind=resource.kind,
                name=name,
                namespace=namespace,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=client.V1EventSource(component=EVENT_SOURCE),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        self.core.create_namespaced_event(namespace or "default", body)

    def list(self, resource: ResourceType) -> Dict[str, Any]:
        """List ``resource`` across all namespaces (raw list response)."""

        return self._api.list_cluster_custom_object(
            group=resource.group,
            version=resource.version,
            plural=resource.plural,
        )

    def list_objects(self, resource: ResourceType) -> List[Dict[str, Any]]:
        return [_with_kind(item, resource) for item in self.list(resource).get("items") or []]


def list_cluster_state(kube: KubernetesObjectClient) -> List[Dict[str, Any]]:
    """Collect everything the conformance checker needs from a live cluster.

    Besides the watched types this lists the network objects of every kind a
    NetworkClass targets, using the matching CRD to find its plural name.
    """

    objects: List[Dict[str, Any]] = []
    for resource in WATCHED_TYPES:
        objects.extend(kube.list_objects(resource))

    crds = [
        CustomResourceDefinition.from_dict(o) for o in objects if o.get("kind") == CRD_TYPE.kind
    ]
    targets = {
        NetworkClass.from_dict(o).target
        for o in objects
        if o.get("kind") == NETWORK_CLASS_TYPE.kind
    }
    for target in sorted(targets, key=str):
        crd = next(
            (c for c in crds if c.group == target.group and c.kind == target.kind and target.version in c.versions),
            None,
        )
        if crd is None:
            LOG.warning("no CustomResourceDefinition serves %s; skipping its objects", target)
            continue
        objects.extend(kube.list_objects(crd.resource_type(target.version)))
    return objects


def iter_network_types(crds: Iterable[CustomResourceDefinition], classes: Iterable[NetworkClass]) -> List[ResourceType]:
    """Resource types of the network kinds targeted by ``classes``."""

    crd_list = list(crds)
    types: List[ResourceType] = []
    for network_class in classes:
        target = network_class.target
        for crd in crd_list:
            if crd.group == target.group and crd.kind == target.kind and target.version in crd.versions:
                resource = crd.resource_type(target.version)
                if resource not in types:
                    types.append(resource)
    return types
