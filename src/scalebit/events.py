"""Metrics events for the Scalebit controller."""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field
from safir.dependencies.metrics import EventMaker
from safir.metrics import EventManager, EventPayload

__all__ = [
    "ControllerEvents",
    "GarbageCollectedEvent",
    "MicroserviceMetadata",
    "QueueDepthEvent",
    "ReconcileFailureEvent",
    "ReconcileSuccessEvent",
]


class QueueDepthEvent(EventPayload):
    """Current size of the reconciliation queue.

    Notes
    -----
    This is really a gauge metric that is measured periodically, not an event.
    """

    depth: int = Field(
        ...,
        title="Queue depth",
        description="Number of microservices ready to be reconciled",
    )

    retrying: int = Field(
        ...,
        title="Delayed keys",
        description=(
            "Number of microservices waiting for a delayed retry or readiness"
            " check"
        ),
    )


class MicroserviceMetadata(EventPayload):
    """Common microservice metadata for events."""

    namespace: str = Field(
        ..., title="Namespace", description="Namespace of the microservice"
    )

    name: str = Field(
        ..., title="Name", description="Name of the microservice"
    )


class ReconcileFailureEvent(MicroserviceMetadata):
    """A reconciliation pass failed."""

    elapsed: timedelta = Field(
        ...,
        title="Duration of pass",
        description="How long the pass ran before it failed",
    )

    error: str = Field(
        ...,
        title="Error type",
        description="Class name of the exception that aborted the pass",
    )

    attempts: int = Field(
        ...,
        title="Consecutive failures",
        description="Number of consecutive failed passes, including this one",
    )


class ReconcileSuccessEvent(MicroserviceMetadata):
    """A reconciliation pass succeeded."""

    elapsed: timedelta = Field(
        ..., title="Duration of pass", description="How long the pass took"
    )

    changed: bool = Field(
        ...,
        title="Whether anything changed",
        description="Whether the pass wrote anything to the store",
    )


class GarbageCollectedEvent(EventPayload):
    """An orphaned managed resource was deleted."""

    kind: str = Field(
        ..., title="Kind", description="Kind of the deleted resource"
    )

    namespace: str = Field(
        ..., title="Namespace", description="Namespace of the deleted resource"
    )

    name: str = Field(
        ..., title="Name", description="Name of the deleted resource"
    )


class ControllerEvents(EventMaker):
    """Event publishers for Scalebit controller events.

    Attributes
    ----------
    garbage_collected
        Event publisher for deleted orphaned resources.
    queue_depth
        Event publisher for the size of the work queue.
    reconcile_failure
        Event publisher for failed reconciliation passes.
    reconcile_success
        Event publisher for successful reconciliation passes.
    """

    async def initialize(self, manager: EventManager) -> None:
        self.garbage_collected = await manager.create_publisher(
            "garbage_collected", GarbageCollectedEvent
        )
        self.queue_depth = await manager.create_publisher(
            "queue_depth", QueueDepthEvent
        )
        self.reconcile_failure = await manager.create_publisher(
            "reconcile_failure", ReconcileFailureEvent
        )
        self.reconcile_success = await manager.create_publisher(
            "reconcile_success", ReconcileSuccessEvent
        )
