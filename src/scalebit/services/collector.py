"""Garbage collection of managed resources whose owner is gone."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..constants import MICROSERVICE_KIND
from ..events import ControllerEvents, GarbageCollectedEvent
from ..exceptions import InvariantViolationError, StoreError
from ..models.domain.managed import ManagedResource
from ..models.domain.microservice import Microservice
from ..models.domain.resource import MANAGED_KINDS
from ..storage.base import MODELS, ResourceStore

__all__ = ["GarbageCollector"]


class GarbageCollector:
    """Delete managed resources whose controlling microservice is gone.

    Owner references record the UID of the owner, so a resource left behind
    by a deleted microservice is recognized even if a new microservice of the
    same name has since been created. Resources without a controlling
    microservice reference are never touched.

    Parameters
    ----------
    store
        Resource store.
    namespace
        Namespace to sweep, or `None` for all namespaces.
    events
        Event publishers, if metrics events should be published.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        store: ResourceStore,
        namespace: str | None,
        events: ControllerEvents | None,
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._events = events
        self._logger = logger

    async def collect(self) -> int:
        """Sweep every managed kind once.

        Failures affecting one resource, or listing one kind, are logged and
        do not stop the sweep.

        Returns
        -------
        int
            Number of resources deleted.
        """
        deleted = 0
        for kind in MANAGED_KINDS:
            try:
                objs = await self._store.list(MODELS[kind], self._namespace)
            except StoreError as e:
                msg = f"Unable to list {kind.value} objects"
                self._logger.warning(msg, error=str(e))
                continue
            for obj in objs:
                try:
                    if await self._collect_one(obj):  # type: ignore[arg-type]
                        deleted += 1
                except (StoreError, InvariantViolationError) as e:
                    self._logger.warning(
                        f"Unable to garbage collect {kind.value}",
                        namespace=obj.metadata.namespace,
                        name=obj.metadata.name,
                        error=str(e),
                    )
        if deleted:
            self._logger.info("Garbage collection complete", deleted=deleted)
        return deleted

    async def _collect_one(self, obj: ManagedResource) -> bool:
        metadata = obj.metadata
        reference = metadata.controller_reference()
        if not reference or reference.kind != MICROSERVICE_KIND:
            return False
        if not reference.uid:
            return False
        owner = await self._store.get(
            Microservice, metadata.namespace, reference.name
        )
        if owner and owner.metadata.uid == reference.uid:
            return False

        await self._store.delete(
            type(obj),
            metadata.namespace,
            metadata.name,
            expected_version=metadata.resource_version,
        )
        self._logger.info(
            f"Deleted orphaned {obj.kind.value}",
            namespace=metadata.namespace,
            name=metadata.name,
            owner=reference.name,
            owner_uid=reference.uid,
        )
        if self._events:
            event = GarbageCollectedEvent(
                kind=obj.kind.value,
                namespace=metadata.namespace,
                name=metadata.name,
            )
            await self._events.garbage_collected.publish(event)
        return True
