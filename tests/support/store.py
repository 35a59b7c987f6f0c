"""Resource store with injectable failures."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import override

from structlog.stdlib import BoundLogger

from scalebit.exceptions import TransientStoreError
from scalebit.models.domain.microservice import Microservice
from scalebit.models.domain.resource import ResourceKind, StoreEvent
from scalebit.storage.base import StoredObject
from scalebit.storage.memory import MemoryResourceStore

__all__ = ["FaultyStore"]


class FaultyStore(MemoryResourceStore):
    """In-memory store that fails or races on request.

    Attributes
    ----------
    fail_create
        Kinds whose creation fails with a transient error.
    fail_status
        Whether status updates fail with a transient error.
    race_create
        Kinds for which another writer creates the same object just before
        each creation, so that the creation fails as already existing. Each
        kind races only once.
    watch_failures
        Number of watches that fail immediately before watches succeed.
    watch_errors
        Unexpected exceptions, other than store errors, raised in order by
        the next watches.
    """

    fail_create: set[ResourceKind]
    fail_status: bool
    race_create: set[ResourceKind]
    watch_failures: int
    watch_errors: list[Exception]

    def __init__(self, logger: BoundLogger, *, cascade: bool = True) -> None:
        super().__init__(logger, cascade=cascade)
        self.fail_create = set()
        self.fail_status = False
        self.race_create = set()
        self.watch_failures = 0
        self.watch_errors = []

    @override
    async def create[T: StoredObject](self, obj: T) -> T:
        if obj.kind in self.fail_create:
            raise TransientStoreError(
                "Injected failure",
                kind=obj.kind.value,
                namespace=obj.metadata.namespace,
                name=obj.metadata.name,
            )
        if obj.kind in self.race_create:
            self.race_create.discard(obj.kind)
            await super().create(obj)
        return await super().create(obj)

    @override
    async def update_status(self, obj: Microservice) -> Microservice:
        if self.fail_status:
            raise TransientStoreError(
                "Injected failure",
                kind=obj.kind.value,
                namespace=obj.metadata.namespace,
                name=obj.metadata.name,
            )
        return await super().update_status(obj)

    @override
    async def watch(
        self, model: type[StoredObject], namespace: str | None = None
    ) -> AsyncIterator[StoreEvent]:
        if self.watch_errors:
            raise self.watch_errors.pop(0)
        if self.watch_failures:
            self.watch_failures -= 1
            msg = "Injected failure"
            raise TransientStoreError(msg, kind=model.kind.value)
        async for event in super().watch(model, namespace):
            yield event
