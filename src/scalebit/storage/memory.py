"""In-process resource store."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import cast, override
from uuid import uuid4

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..exceptions import (
    ObjectConflictError,
    ObjectExistsError,
    ObjectNotFoundError,
)
from ..models.domain.kubernetes import WatchEventType
from ..models.domain.managed import WorkloadReplicaSet
from ..models.domain.microservice import Microservice
from ..models.domain.resource import ResourceKind, StoreEvent
from .base import ResourceStore, StoredObject

__all__ = ["MemoryResourceStore"]

type _Key = tuple[ResourceKind, str, str]


class MemoryResourceStore(ResourceStore):
    """Resource store held entirely in memory.

    Implements the same versioning rules as the Kubernetes API server:
    resource versions change on every write, generations change when
    anything other than status changes, status is only written through
    `update_status`, and objects with finalizers are only marked for deletion
    until the last finalizer is removed. Callers always get copies, so
    mutating a returned object never changes the store.

    Parameters
    ----------
    logger
        Logger to use.
    cascade
        Whether to delete dependents when their controlling owner is deleted,
        as the Kubernetes garbage collector does.
    """

    def __init__(self, logger: BoundLogger, *, cascade: bool = True) -> None:
        self._logger = logger
        self._cascade = cascade
        self._objects: dict[_Key, StoredObject] = {}
        self._version = 0
        self._closed = False
        self._watchers: defaultdict[
            ResourceKind, list[asyncio.Queue[StoreEvent | None]]
        ] = defaultdict(list)

    @override
    async def get[T: StoredObject](
        self, model: type[T], namespace: str, name: str
    ) -> T | None:
        obj = self._objects.get((model.kind, namespace, name))
        if not obj:
            return None
        return cast("T", obj.model_copy(deep=True))

    @override
    async def create[T: StoredObject](self, obj: T) -> T:
        metadata = obj.metadata
        key = (obj.kind, metadata.namespace, metadata.name)
        if key in self._objects:
            msg = "Object already exists"
            raise ObjectExistsError(
                msg,
                kind=obj.kind.value,
                namespace=metadata.namespace,
                name=metadata.name,
                status=409,
            )
        stored = obj.model_copy(
            deep=True,
            update={
                "metadata": metadata.model_copy(
                    deep=True,
                    update={
                        "uid": str(uuid4()),
                        "resource_version": self._next_version(),
                        "generation": 1,
                        "deletion_timestamp": None,
                    },
                )
            },
        )
        self._objects[key] = stored
        self._logger.debug(
            f"Created {obj.kind.value}",
            namespace=metadata.namespace,
            name=metadata.name,
            uid=stored.metadata.uid,
        )
        self._notify(WatchEventType.ADDED, stored)
        return stored.model_copy(deep=True)

    @override
    async def update[T: StoredObject](self, obj: T) -> T:
        current = self._get_for_write(obj)
        status = {f: getattr(current, f) for f in current.status_fields}
        changed = obj.model_dump(
            exclude={"metadata", *obj.status_fields}
        ) != current.model_dump(exclude={"metadata", *current.status_fields})
        generation = current.metadata.generation + (1 if changed else 0)
        metadata = obj.metadata.model_copy(
            deep=True,
            update={
                "uid": current.metadata.uid,
                "resource_version": self._next_version(),
                "generation": generation,
                "deletion_timestamp": current.metadata.deletion_timestamp,
            },
        )
        stored = obj.model_copy(
            deep=True, update={"metadata": metadata, **status}
        )
        if metadata.deletion_timestamp and not metadata.finalizers:
            self._remove(stored)
        else:
            self._objects[self._key(stored)] = stored
            self._notify(WatchEventType.MODIFIED, stored)
        return stored.model_copy(deep=True)

    @override
    async def update_status(self, obj: Microservice) -> Microservice:
        current = self._get_for_write(obj)
        metadata = current.metadata.model_copy(
            update={"resource_version": self._next_version()}
        )
        stored = current.model_copy(
            deep=True,
            update={"metadata": metadata, "status": obj.status},
        )
        self._objects[self._key(stored)] = stored
        self._notify(WatchEventType.MODIFIED, stored)
        return stored.model_copy(deep=True)

    @override
    async def delete(
        self,
        model: type[StoredObject],
        namespace: str,
        name: str,
        *,
        expected_version: str | None = None,
    ) -> None:
        current = self._objects.get((model.kind, namespace, name))
        if not current:
            return
        version = current.metadata.resource_version
        if expected_version and expected_version != version:
            msg = f"Resource version {expected_version} is stale"
            raise ObjectConflictError(
                msg,
                kind=model.kind.value,
                namespace=namespace,
                name=name,
                status=409,
            )
        if current.metadata.finalizers:
            if current.metadata.deletion_timestamp:
                return
            metadata = current.metadata.model_copy(
                update={
                    "resource_version": self._next_version(),
                    "deletion_timestamp": current_datetime(),
                }
            )
            stored = current.model_copy(update={"metadata": metadata})
            self._objects[self._key(stored)] = stored
            self._notify(WatchEventType.MODIFIED, stored)
        else:
            self._remove(current)

    @override
    async def list[T: StoredObject](
        self, model: type[T], namespace: str | None = None
    ) -> list[T]:
        return [
            cast("T", obj.model_copy(deep=True))
            for (kind, ns, _), obj in sorted(
                self._objects.items(), key=lambda i: i[0][1:]
            )
            if kind == model.kind and (namespace is None or ns == namespace)
        ]

    @override
    async def watch(
        self, model: type[StoredObject], namespace: str | None = None
    ) -> AsyncIterator[StoreEvent]:
        if self._closed:
            return
        queue: asyncio.Queue[StoreEvent | None] = asyncio.Queue()
        self._watchers[model.kind].append(queue)
        try:
            while event := await queue.get():
                if namespace is None or event.metadata.namespace == namespace:
                    yield event
        finally:
            self._watchers[model.kind].remove(queue)

    @override
    async def aclose(self) -> None:
        self._closed = True
        for queues in self._watchers.values():
            for queue in queues:
                queue.put_nowait(None)

    async def report_ready_replicas(
        self, namespace: str, name: str, ready: int
    ) -> None:
        """Record the number of ready pods of a workload.

        Stands in for the status updates the Kubernetes deployment controller
        would make as pods become ready.

        Raises
        ------
        ObjectNotFoundError
            Raised if the workload does not exist.
        """
        current = self._objects.get(
            (ResourceKind.WORKLOAD_REPLICA_SET, namespace, name)
        )
        if not isinstance(current, WorkloadReplicaSet):
            msg = "Workload does not exist"
            raise ObjectNotFoundError(
                msg,
                kind=ResourceKind.WORKLOAD_REPLICA_SET.value,
                namespace=namespace,
                name=name,
                status=404,
            )
        metadata = current.metadata.model_copy(
            update={"resource_version": self._next_version()}
        )
        stored = current.model_copy(
            update={"metadata": metadata, "ready_replicas": ready}
        )
        self._objects[self._key(stored)] = stored
        self._notify(WatchEventType.MODIFIED, stored)

    def _get_for_write(self, obj: StoredObject) -> StoredObject:
        metadata = obj.metadata
        current = self._objects.get(self._key(obj))
        if not current:
            msg = "Object does not exist"
            raise ObjectNotFoundError(
                msg,
                kind=obj.kind.value,
                namespace=metadata.namespace,
                name=metadata.name,
                status=404,
            )
        expected = metadata.resource_version
        if expected and expected != current.metadata.resource_version:
            msg = f"Resource version {expected} is stale"
            raise ObjectConflictError(
                msg,
                kind=obj.kind.value,
                namespace=metadata.namespace,
                name=metadata.name,
                status=409,
            )
        return current

    def _key(self, obj: StoredObject) -> _Key:
        return (obj.kind, obj.metadata.namespace, obj.metadata.name)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _notify(self, action: WatchEventType, obj: StoredObject) -> None:
        event = StoreEvent(
            action=action,
            kind=obj.kind,
            metadata=obj.metadata.model_copy(deep=True),
        )
        for queue in self._watchers[obj.kind]:
            queue.put_nowait(event)

    def _remove(self, obj: StoredObject) -> None:
        """Remove an object and, if cascading, everything it controls."""
        del self._objects[self._key(obj)]
        self._logger.debug(
            f"Deleted {obj.kind.value}",
            namespace=obj.metadata.namespace,
            name=obj.metadata.name,
        )
        self._notify(WatchEventType.DELETED, obj)
        if not self._cascade:
            return
        uid = obj.metadata.uid
        dependents = [
            o
            for o in self._objects.values()
            if any(r.uid == uid for r in o.metadata.owner_references)
        ]
        for dependent in dependents:
            if self._key(dependent) in self._objects:
                self._remove(dependent)
