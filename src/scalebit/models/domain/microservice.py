"""Models for the ``Microservice`` desired-state object."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...constants import MICROSERVICE_API_VERSION, MICROSERVICE_KIND
from .resource import ObjectKey, ObjectMeta, OwnerReference, ResourceKind

__all__ = [
    "Microservice",
    "MicroserviceSpec",
    "MicroserviceStatus",
]


class MicroserviceSpec(BaseModel):
    """User-declared specification of a microservice."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    image: Annotated[
        str,
        Field(
            title="Container image",
            description="Docker reference of the image to run",
            examples=["orders:v1"],
            min_length=1,
        ),
    ]

    port: Annotated[
        int,
        Field(
            title="Container port",
            description=(
                "Port the container listens on and the service exposes"
            ),
            examples=[8082],
            ge=0,
            le=2**31 - 1,
        ),
    ]

    replicas: Annotated[
        int,
        Field(
            title="Replica count",
            description="Number of pods to run",
            examples=[2],
            ge=1,
            le=2**31 - 1,
        ),
    ]


class MicroserviceStatus(BaseModel):
    """Observed state written back by the reconciler."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    observed_generation: Annotated[
        int,
        Field(
            title="Observed generation",
            description=(
                "Last generation for which every managed resource was"
                " confirmed to match the spec"
            ),
        ),
    ] = 0

    ready_replicas: Annotated[
        int,
        Field(
            title="Ready replicas",
            description="Ready replicas reported by the workload",
        ),
    ] = 0


class Microservice(BaseModel):
    """Desired state of a microservice.

    This is the only object kind that external actors create and modify.
    Everything else is derived from it by the reconciler.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: ClassVar[ResourceKind] = ResourceKind.MICROSERVICE

    status_fields: ClassVar[frozenset[str]] = frozenset({"status"})
    """Fields only written through the status subresource."""

    metadata: ObjectMeta

    spec: MicroserviceSpec

    status: MicroserviceStatus = MicroserviceStatus()

    @classmethod
    def from_kubernetes(cls, obj: dict[str, Any]) -> Self:
        """Create from a custom object returned by the Kubernetes API.

        Raises
        ------
        pydantic.ValidationError
            Raised if the spec of the object is invalid.
        """
        return cls.model_validate(obj)

    @property
    def key(self) -> ObjectKey:
        """Namespace-qualified name of the microservice."""
        return self.metadata.key

    @property
    def owner_reference(self) -> OwnerReference:
        """Controlling owner reference for objects this microservice owns."""
        return OwnerReference(
            api_version=MICROSERVICE_API_VERSION,
            kind=MICROSERVICE_KIND,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def owns(self, metadata: ObjectMeta) -> bool:
        """Whether this microservice is the controller of an object."""
        reference = metadata.controller_reference()
        if not reference or reference.kind != MICROSERVICE_KIND:
            return False
        return bool(self.metadata.uid) and reference.uid == self.metadata.uid

    def to_kubernetes(self) -> dict[str, Any]:
        """Convert to a custom object body for the Kubernetes API."""
        return {
            "apiVersion": MICROSERVICE_API_VERSION,
            "kind": MICROSERVICE_KIND,
            "metadata": self.metadata.model_dump(
                mode="json", by_alias=True, exclude_defaults=True
            ),
            "spec": self.spec.model_dump(mode="json", by_alias=True),
            "status": self.status.model_dump(mode="json", by_alias=True),
        }
