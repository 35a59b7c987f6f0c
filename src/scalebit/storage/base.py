"""Interface to the resource store."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from collections.abc import AsyncIterator

from ..models.domain.managed import (
    NetworkEndpoint,
    ScalingPolicy,
    WorkloadReplicaSet,
)
from ..models.domain.microservice import Microservice
from ..models.domain.resource import ResourceKind, StoreEvent

__all__ = [
    "MODELS",
    "ResourceStore",
    "StoredObject",
]

type StoredObject = (
    Microservice | WorkloadReplicaSet | NetworkEndpoint | ScalingPolicy
)
"""Any object held by the resource store."""

MODELS: dict[ResourceKind, type[StoredObject]] = {
    ResourceKind.MICROSERVICE: Microservice,
    ResourceKind.WORKLOAD_REPLICA_SET: WorkloadReplicaSet,
    ResourceKind.NETWORK_ENDPOINT: NetworkEndpoint,
    ResourceKind.SCALING_POLICY: ScalingPolicy,
}
"""Model class for each kind of stored object."""


class ResourceStore(metaclass=ABCMeta):
    """Versioned object store with optimistic concurrency.

    Every object has a resource version, which changes on every write. Writes
    that name an expected version fail with
    `~scalebit.exceptions.ObjectConflictError` if the stored version differs,
    so concurrent writers never silently overwrite each other.

    Methods take the model class of the object (for example
    `~scalebit.models.domain.microservice.Microservice`) to select the kind.
    All methods may raise `~scalebit.exceptions.TransientStoreError` if the
    store cannot be reached within the per-call timeout, or another subclass
    of `~scalebit.exceptions.StoreError` on failure.
    """

    @abstractmethod
    async def get[T: StoredObject](
        self, model: type[T], namespace: str, name: str
    ) -> T | None:
        """Retrieve an object.

        Parameters
        ----------
        model
            Model class of the object.
        namespace
            Namespace of the object.
        name
            Name of the object.

        Returns
        -------
        StoredObject or None
            Current state of the object, or `None` if it does not exist.
        """

    @abstractmethod
    async def create[T: StoredObject](self, obj: T) -> T:
        """Create a new object.

        The UID, resource version, and generation of the provided object are
        ignored and assigned by the store.

        Parameters
        ----------
        obj
            Object to create.

        Returns
        -------
        StoredObject
            Object as stored.

        Raises
        ------
        ObjectExistsError
            Raised if an object of that kind and name already exists.
        """

    @abstractmethod
    async def update[T: StoredObject](self, obj: T) -> T:
        """Replace an object, excluding its status.

        Parameters
        ----------
        obj
            New state of the object. Its resource version must match the
            stored resource version.

        Returns
        -------
        StoredObject
            Object as stored, with its new resource version.

        Raises
        ------
        ObjectConflictError
            Raised if the object was changed since it was read.
        ObjectNotFoundError
            Raised if the object does not exist.
        """

    @abstractmethod
    async def update_status(self, obj: Microservice) -> Microservice:
        """Replace the status of a microservice.

        Parameters
        ----------
        obj
            Microservice with the new status. Its resource version must match
            the stored resource version.

        Returns
        -------
        Microservice
            Object as stored, with its new resource version.

        Raises
        ------
        ObjectConflictError
            Raised if the object was changed since it was read.
        ObjectNotFoundError
            Raised if the object does not exist.
        """

    @abstractmethod
    async def delete(
        self,
        model: type[StoredObject],
        namespace: str,
        name: str,
        *,
        expected_version: str | None = None,
    ) -> None:
        """Delete an object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        model
            Model class of the object.
        namespace
            Namespace of the object.
        name
            Name of the object.
        expected_version
            If given, only delete the object if this is its current resource
            version.

        Raises
        ------
        ObjectConflictError
            Raised if ``expected_version`` does not match.
        """

    @abstractmethod
    async def list[T: StoredObject](
        self, model: type[T], namespace: str | None = None
    ) -> list[T]:
        """List objects of one kind.

        Parameters
        ----------
        model
            Model class of the objects.
        namespace
            If given, only list objects in this namespace.

        Returns
        -------
        list of StoredObject
            All matching objects.
        """

    @abstractmethod
    def watch(
        self, model: type[StoredObject], namespace: str | None = None
    ) -> AsyncIterator[StoreEvent]:
        """Watch objects of one kind for changes.

        The iterator runs until the store is closed or the underlying
        connection fails, in which case the caller is responsible for
        reconnecting.

        Parameters
        ----------
        model
            Model class of the objects.
        namespace
            If given, only watch objects in this namespace.

        Yields
        ------
        StoreEvent
            Next change.
        """

    async def aclose(self) -> None:
        """Release any resources held by the store."""
