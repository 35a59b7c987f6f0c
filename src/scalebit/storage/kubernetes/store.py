"""Resource store backed by the Kubernetes API server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any, cast, override

from kubernetes_asyncio.client import ApiClient
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ...exceptions import InvariantViolationError, ObjectNotFoundError
from ...models.domain.managed import (
    NetworkEndpoint,
    ScalingPolicy,
    WorkloadReplicaSet,
)
from ...models.domain.microservice import Microservice
from ...models.domain.resource import ObjectMeta, ResourceKind, StoreEvent
from ..base import ResourceStore, StoredObject
from .custom import MicroserviceStorage
from .objects import (
    DeploymentStorage,
    HorizontalPodAutoscalerStorage,
    KubernetesObjectStorage,
    ServiceStorage,
)
from .watcher import KubernetesWatcher

__all__ = ["KubernetesResourceStore", "parse_microservice"]

_SERVER_METADATA = (
    "uid",
    "resourceVersion",
    "generation",
    "deletionTimestamp",
)
"""Metadata fields assigned by the API server, omitted on creation."""

_CLIENT_METADATA = {"labels", "annotations", "owner_references", "finalizers"}
"""Metadata fields of a ``Microservice`` written on update."""


def parse_microservice(obj: dict[str, Any]) -> Microservice:
    """Parse a ``Microservice`` custom object.

    Parameters
    ----------
    obj
        Custom object as returned by the Kubernetes API.

    Returns
    -------
    Microservice
        Parsed object.

    Raises
    ------
    InvariantViolationError
        Raised if the spec of the object is invalid.
    """
    try:
        return Microservice.from_kubernetes(obj)
    except ValidationError as e:
        metadata = obj.get("metadata", {})
        raise InvariantViolationError.from_exception(
            e,
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
        ) from e


def _from_kubernetes(kind: ResourceKind, obj: Any) -> StoredObject:
    match kind:
        case ResourceKind.MICROSERVICE:
            return parse_microservice(obj)
        case ResourceKind.WORKLOAD_REPLICA_SET:
            return WorkloadReplicaSet.from_kubernetes(obj)
        case ResourceKind.NETWORK_ENDPOINT:
            return NetworkEndpoint.from_kubernetes(obj)
        case ResourceKind.SCALING_POLICY:
            return ScalingPolicy.from_kubernetes(obj)


class KubernetesResourceStore(ResourceStore):
    """Resource store using the Kubernetes API.

    ``Microservice`` objects are custom objects, and the managed resources are
    ``Deployment``, ``Service``, and ``HorizontalPodAutoscaler`` objects.
    Kubernetes deletes managed resources itself when their controlling owner
    is deleted.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        self._logger = logger
        self._microservices = MicroserviceStorage(api_client, timeout, logger)
        self._deployments = DeploymentStorage(api_client, timeout, logger)
        self._services = ServiceStorage(api_client, timeout, logger)
        self._autoscalers = HorizontalPodAutoscalerStorage(
            api_client, timeout, logger
        )
        self._watchers: set[KubernetesWatcher[Any]] = set()

    @override
    async def get[T: StoredObject](
        self, model: type[T], namespace: str, name: str
    ) -> T | None:
        obj = await self._storage_for(model.kind).read(name, namespace)
        if not obj:
            return None
        return cast("T", _from_kubernetes(model.kind, obj))

    @override
    async def create[T: StoredObject](self, obj: T) -> T:
        namespace = obj.metadata.namespace
        match obj:
            case Microservice():
                body = obj.to_kubernetes()
                for field in _SERVER_METADATA:
                    body["metadata"].pop(field, None)
                del body["status"]
                result = await self._microservices.create(namespace, body)
            case _:
                body = obj.to_kubernetes()
                body.metadata.uid = None
                body.metadata.resource_version = None
                storage = self._object_storage_for(obj.kind)
                result = await storage.create(namespace, body)
        return cast("T", _from_kubernetes(obj.kind, result))

    @override
    async def update[T: StoredObject](self, obj: T) -> T:
        namespace = obj.metadata.namespace
        name = obj.metadata.name
        version = obj.metadata.resource_version
        match obj:
            case Microservice():
                body = await self._microservices.read(name, namespace)
                if not body:
                    raise self._not_found(obj)
                metadata = obj.metadata.model_dump(
                    mode="json", by_alias=True, include=_CLIENT_METADATA
                )
                body["metadata"].update(metadata)
                if version:
                    body["metadata"]["resourceVersion"] = version
                body["spec"] = obj.spec.model_dump(mode="json", by_alias=True)
                result = await self._microservices.replace(
                    name, namespace, body
                )
            case _:
                storage = self._object_storage_for(obj.kind)
                result = await storage.read(name, namespace)
                if not result:
                    raise self._not_found(obj)
                if version:
                    result.metadata.resource_version = version
                obj.update_kubernetes(result)
                result = await storage.replace(name, namespace, result)
        return cast("T", _from_kubernetes(obj.kind, result))

    @override
    async def update_status(self, obj: Microservice) -> Microservice:
        namespace = obj.metadata.namespace
        name = obj.metadata.name
        body = obj.to_kubernetes()
        result = await self._microservices.replace_status(
            name, namespace, body
        )
        return parse_microservice(result)

    @override
    async def delete(
        self,
        model: type[StoredObject],
        namespace: str,
        name: str,
        *,
        expected_version: str | None = None,
    ) -> None:
        await self._storage_for(model.kind).delete(
            name, namespace, resource_version=expected_version
        )

    @override
    async def list[T: StoredObject](
        self, model: type[T], namespace: str | None = None
    ) -> list[T]:
        results = []
        for obj in await self._storage_for(model.kind).list(namespace):
            try:
                results.append(cast("T", _from_kubernetes(model.kind, obj)))
            except InvariantViolationError as e:
                self._logger.warning(
                    "Skipping invalid microservice",
                    namespace=e.namespace,
                    name=e.name,
                    error=e.error,
                )
        return results

    @override
    async def watch(
        self, model: type[StoredObject], namespace: str | None = None
    ) -> AsyncIterator[StoreEvent]:
        watcher = self._storage_for(model.kind).watcher(namespace)
        self._watchers.add(watcher)
        try:
            async for event in watcher.watch():
                if isinstance(event.object, dict):
                    raw = event.object.get("metadata", {})
                    metadata = ObjectMeta.model_validate(raw)
                else:
                    raw = event.object.metadata
                    metadata = ObjectMeta.from_kubernetes(raw)
                yield StoreEvent(
                    action=event.action, kind=model.kind, metadata=metadata
                )
        finally:
            self._watchers.discard(watcher)
            await watcher.close()

    @override
    async def aclose(self) -> None:
        for watcher in list(self._watchers):
            watcher.stop()

    def _not_found(self, obj: StoredObject) -> ObjectNotFoundError:
        return ObjectNotFoundError(
            "Object does not exist",
            kind=obj.kind.value,
            namespace=obj.metadata.namespace,
            name=obj.metadata.name,
            status=404,
        )

    def _object_storage_for(
        self, kind: ResourceKind
    ) -> KubernetesObjectStorage[Any]:
        match kind:
            case ResourceKind.WORKLOAD_REPLICA_SET:
                return self._deployments
            case ResourceKind.NETWORK_ENDPOINT:
                return self._services
            case ResourceKind.SCALING_POLICY:
                return self._autoscalers
            case _:
                raise ValueError(f"No object storage for {kind.value}")

    def _storage_for(
        self, kind: ResourceKind
    ) -> MicroserviceStorage | KubernetesObjectStorage[Any]:
        if kind == ResourceKind.MICROSERVICE:
            return self._microservices
        return self._object_storage_for(kind)
