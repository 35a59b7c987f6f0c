"""Identity and metadata shared by every object in the resource store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Self

from kubernetes_asyncio.client import V1ObjectMeta, V1OwnerReference
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...constants import MICROSERVICE_KIND
from .kubernetes import WatchEventType

__all__ = [
    "MANAGED_KINDS",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "ResourceKind",
    "StoreEvent",
]


class ResourceKind(Enum):
    """Kinds of object the controller reads and writes.

    The value is the Kubernetes kind backing each abstraction. Everything
    other than `MICROSERVICE` is a managed resource created by the
    reconciler.
    """

    MICROSERVICE = MICROSERVICE_KIND
    WORKLOAD_REPLICA_SET = "Deployment"
    NETWORK_ENDPOINT = "Service"
    SCALING_POLICY = "HorizontalPodAutoscaler"


MANAGED_KINDS = (
    ResourceKind.WORKLOAD_REPLICA_SET,
    ResourceKind.NETWORK_ENDPOINT,
    ResourceKind.SCALING_POLICY,
)
"""Managed kinds in the order in which they are created.

The scaling policy refers to the workload, so the workload must always exist
first. Deletion uses the reverse order.
"""


@dataclass(frozen=True, slots=True)
class ObjectKey:
    """Namespace-qualified name of an object.

    This is the unit of work placed on the work queue.
    """

    namespace: str
    """Namespace of the object."""

    name: str
    """Name of the object."""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class OwnerReference(BaseModel):
    """Back-reference from a managed object to the object that owns it."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False

    @classmethod
    def from_kubernetes(cls, ref: V1OwnerReference) -> Self:
        """Create from a Kubernetes API object."""
        return cls(
            api_version=ref.api_version,
            kind=ref.kind,
            name=ref.name,
            uid=ref.uid,
            controller=bool(ref.controller),
            block_owner_deletion=bool(ref.block_owner_deletion),
        )

    def to_kubernetes(self) -> V1OwnerReference:
        """Convert to the corresponding Kubernetes API object."""
        return V1OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.uid,
            controller=self.controller,
            block_owner_deletion=self.block_owner_deletion,
        )


class ObjectMeta(BaseModel):
    """Metadata common to all stored objects.

    The identity and version fields (``uid``, ``resource_version``, and
    ``generation``) are assigned by the store and should be left at their
    defaults when building a new object.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., title="Name")

    namespace: str = Field(..., title="Namespace")

    uid: str = Field(
        "",
        title="Unique identifier",
        description="Distinguishes objects that reused the same name",
    )

    resource_version: str | None = Field(
        None,
        title="Resource version",
        description="Opaque version token used for conditional writes",
    )

    generation: int = Field(
        0,
        title="Generation",
        description="Incremented by the store on every change to the spec",
    )

    labels: dict[str, str] = Field({}, title="Labels")

    annotations: dict[str, str] = Field({}, title="Annotations")

    owner_references: list[OwnerReference] = Field([], title="Owners")

    finalizers: list[str] = Field([], title="Finalizers")

    deletion_timestamp: datetime | None = Field(
        None,
        title="Deletion time",
        description="Set when deletion is blocked on finalizers",
    )

    @classmethod
    def from_kubernetes(cls, metadata: V1ObjectMeta) -> Self:
        """Create from a Kubernetes API object."""
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            uid=metadata.uid or "",
            resource_version=metadata.resource_version,
            generation=metadata.generation or 0,
            labels=metadata.labels or {},
            annotations=metadata.annotations or {},
            owner_references=[
                OwnerReference.from_kubernetes(r)
                for r in metadata.owner_references or []
            ],
            finalizers=metadata.finalizers or [],
            deletion_timestamp=metadata.deletion_timestamp,
        )

    @property
    def key(self) -> ObjectKey:
        """Namespace-qualified name of the object."""
        return ObjectKey(namespace=self.namespace, name=self.name)

    def controller_reference(self) -> OwnerReference | None:
        """Return the controlling owner reference, if there is one."""
        for reference in self.owner_references:
            if reference.controller:
                return reference
        return None

    def to_kubernetes(self) -> V1ObjectMeta:
        """Convert to the corresponding Kubernetes API object."""
        return V1ObjectMeta(
            name=self.name,
            namespace=self.namespace,
            uid=self.uid or None,
            resource_version=self.resource_version,
            labels=self.labels or None,
            annotations=self.annotations or None,
            owner_references=[
                r.to_kubernetes() for r in self.owner_references
            ]
            or None,
            finalizers=self.finalizers or None,
        )


@dataclass
class StoreEvent:
    """Change notification from a watch on the resource store.

    Only the metadata of the changed object is carried. Reconciliation always
    rereads the full current state, so the payload is only used to find which
    microservice needs attention.
    """

    action: WatchEventType
    """Action the event represents."""

    kind: ResourceKind
    """Kind of the changed object."""

    metadata: ObjectMeta
    """Metadata of the changed object."""
