"""Reconciliation of a single microservice."""

from __future__ import annotations

from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..constants import FINALIZER
from ..exceptions import ObjectExistsError, OwnershipConflictError
from ..models.domain.managed import ManagedResource, WorkloadReplicaSet
from ..models.domain.microservice import Microservice, MicroserviceStatus
from ..models.domain.reconcile import ReconcileResult
from ..models.domain.resource import ObjectKey
from ..storage.base import ResourceStore
from .builder import MicroserviceBuilder

__all__ = ["Reconciler"]


class Reconciler:
    """Drive the managed resources of a microservice toward its spec.

    Each pass reads the current state from the store and makes only the
    writes needed to converge, so passes can be repeated or interrupted at
    any point. A pass over an object that is already converged makes no
    writes at all.

    Parameters
    ----------
    store
        Resource store.
    builder
        Builder for the desired managed resources.
    readiness_interval
        How soon to check again while the workload has fewer ready replicas
        than requested.
    finalizer
        Whether to add a finalizer to microservices and delete their managed
        resources explicitly when they are deleted.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        store: ResourceStore,
        builder: MicroserviceBuilder,
        readiness_interval: timedelta,
        finalizer: bool,
        logger: BoundLogger,
    ) -> None:
        self._store = store
        self._builder = builder
        self._readiness_interval = readiness_interval
        self._finalizer = finalizer
        self._logger = logger

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """Perform one reconciliation pass.

        Managed resources are created or corrected in order (workload,
        endpoint, scaling policy). The status is only advanced once all three
        are confirmed to match the current generation.

        Parameters
        ----------
        key
            Namespace and name of the microservice.

        Returns
        -------
        ReconcileResult
            Whether the pass converged or needs to be repeated later.

        Raises
        ------
        InvariantViolationError
            Raised if the microservice is malformed.
        OwnershipConflictError
            Raised if a managed resource already exists but is not controlled
            by this microservice.
        StoreError
            Raised on any failure of the store, which aborts the pass.
        """
        logger = self._logger.bind(namespace=key.namespace, name=key.name)
        microservice = await self._store.get(
            Microservice, key.namespace, key.name
        )
        if not microservice:
            logger.debug("Microservice does not exist, nothing to do")
            return ReconcileResult()
        if microservice.metadata.deletion_timestamp:
            return await self._finalize(microservice, logger)

        changed = False
        finalizers = microservice.metadata.finalizers
        if self._finalizer and FINALIZER not in finalizers:
            microservice = await self._add_finalizer(microservice, logger)
            changed = True

        ready = 0
        for target in self._builder.build(microservice):
            live, wrote = await self._upsert(microservice, target, logger)
            changed = changed or wrote
            if isinstance(live, WorkloadReplicaSet):
                ready = live.ready_replicas

        status = MicroserviceStatus(
            observed_generation=microservice.metadata.generation,
            ready_replicas=ready,
        )
        if microservice.status != status:
            update = microservice.model_copy(update={"status": status})
            await self._store.update_status(update)
            logger.info(
                "Updated microservice status",
                observed_generation=status.observed_generation,
                ready_replicas=status.ready_replicas,
            )
            changed = True

        if not changed:
            logger.debug("Microservice already converged")
        if ready < microservice.spec.replicas:
            logger.debug(
                "Waiting for replicas to become ready",
                ready=ready,
                replicas=microservice.spec.replicas,
            )
            return ReconcileResult(
                requeue_after=self._readiness_interval, changed=changed
            )
        return ReconcileResult(changed=changed)

    async def _add_finalizer(
        self, microservice: Microservice, logger: BoundLogger
    ) -> Microservice:
        finalizers = [*microservice.metadata.finalizers, FINALIZER]
        metadata = microservice.metadata.model_copy(
            update={"finalizers": finalizers}
        )
        result = await self._store.update(
            microservice.model_copy(update={"metadata": metadata})
        )
        logger.debug("Added finalizer")
        return result

    async def _finalize(
        self, microservice: Microservice, logger: BoundLogger
    ) -> ReconcileResult:
        """Delete the managed resources of a microservice being deleted.

        Only done if our finalizer is present. Otherwise, cascade deletion is
        left to the store and there is nothing to do.
        """
        if FINALIZER not in microservice.metadata.finalizers:
            return ReconcileResult()
        namespace = microservice.key.namespace
        for target in reversed(self._builder.build(microservice)):
            model = type(target)
            name = target.metadata.name
            live = await self._store.get(model, namespace, name)
            if not live or not microservice.owns(live.metadata):
                continue
            await self._store.delete(
                model,
                namespace,
                name,
                expected_version=live.metadata.resource_version,
            )
            logger.info(f"Deleted {model.kind.value}", resource=name)

        finalizers = [
            f for f in microservice.metadata.finalizers if f != FINALIZER
        ]
        metadata = microservice.metadata.model_copy(
            update={"finalizers": finalizers}
        )
        await self._store.update(
            microservice.model_copy(update={"metadata": metadata})
        )
        logger.info("Removed finalizer after deleting managed resources")
        return ReconcileResult(changed=True)

    async def _upsert[T: ManagedResource](
        self, microservice: Microservice, target: T, logger: BoundLogger
    ) -> tuple[T, bool]:
        """Make one managed resource match its target.

        Returns
        -------
        tuple
            Resulting state of the resource and whether anything was written.
        """
        model = type(target)
        namespace = target.metadata.namespace
        name = target.metadata.name
        kind = model.kind.value
        logger = logger.bind(kind=kind, resource=name)

        live = await self._store.get(model, namespace, name)
        if not live:
            try:
                created = await self._store.create(target)
            except ObjectExistsError:
                logger.debug(f"{kind} created concurrently, rechecking")
                live = await self._store.get(model, namespace, name)
                if not live:
                    raise
            else:
                logger.info(f"Created {kind}")
                return created, True

        if not microservice.owns(live.metadata):
            reference = live.metadata.controller_reference()
            owner = None
            if reference:
                owner = f"{reference.kind} {reference.name} ({reference.uid})"
            raise OwnershipConflictError(
                kind=kind, namespace=namespace, name=name, owner=owner
            )
        if live.matches(target):  # type: ignore[arg-type]
            return live, False

        desired = live.with_target(target)  # type: ignore[arg-type]
        updated = await self._store.update(desired)
        logger.info(f"Updated {kind} to match microservice")
        return updated, True
