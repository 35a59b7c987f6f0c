"""Conversion of store change notifications into queued work."""

from __future__ import annotations

import asyncio

from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import MICROSERVICE_KIND, WATCH_RETRY_CAP, WATCH_RETRY_INITIAL
from ..exceptions import StoreError
from ..models.domain.microservice import Microservice
from ..models.domain.resource import ObjectKey, ResourceKind, StoreEvent
from ..storage.base import ResourceStore, StoredObject
from .backoff import RetryScheduler

__all__ = ["ChangeNotifier"]


class ChangeNotifier:
    """Queue microservices for reconciliation when anything they own changes.

    Every change to a microservice, or to an object controlled by one, queues
    that microservice. The notifier never waits for reconciliation, and
    repeated changes to the same microservice coalesce in the queue.

    Parameters
    ----------
    store
        Resource store to watch.
    scheduler
        Queue of microservices to reconcile.
    namespace
        Namespace to watch, or `None` for all namespaces.
    logger
        Logger to use.
    slack_client
        If given, client used to report unexpected watch failures.
    """

    def __init__(
        self,
        *,
        store: ResourceStore,
        scheduler: RetryScheduler,
        namespace: str | None,
        logger: BoundLogger,
        slack_client: SlackWebhookClient | None = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._namespace = namespace
        self._logger = logger
        self._slack = slack_client
        self._stopped = False

    def handle(self, event: StoreEvent) -> ObjectKey | None:
        """Queue the microservice responsible for a change, if any.

        Parameters
        ----------
        event
            Change notification.

        Returns
        -------
        ObjectKey or None
            Key of the queued microservice, or `None` if the changed object
            is not a microservice and is not controlled by one.
        """
        key = self.resolve_owner(event)
        if key:
            self._scheduler.add(key)
        return key

    def resolve_owner(self, event: StoreEvent) -> ObjectKey | None:
        """Determine which microservice a change notification concerns."""
        metadata = event.metadata
        if event.kind == ResourceKind.MICROSERVICE:
            return metadata.key
        reference = metadata.controller_reference()
        if not reference or reference.kind != MICROSERVICE_KIND:
            return None
        return ObjectKey(namespace=metadata.namespace, name=reference.name)

    async def resync(self) -> int:
        """Queue every microservice for reconciliation.

        Returns
        -------
        int
            Number of microservices queued.

        Raises
        ------
        StoreError
            Raised if the microservices could not be listed.
        """
        microservices = await self._store.list(Microservice, self._namespace)
        for microservice in microservices:
            self._scheduler.add(microservice.key)
        count = len(microservices)
        self._logger.debug("Queued all microservices", count=count)
        return count

    def stop(self) -> None:
        """Stop reconnecting watches.

        Watches in progress end when the store is closed.
        """
        self._stopped = True

    async def watch(self, model: type[StoredObject]) -> None:
        """Watch one kind of object until stopped.

        If the watch fails for any reason, it is restarted after a delay
        that grows with each consecutive failure. Notifications may have been
        missed while the watch was down, so every microservice is queued
        again before the watch restarts. Failures other than store errors are
        also reported to Slack if a client was configured.

        Parameters
        ----------
        model
            Model class of the objects to watch.
        """
        logger = self._logger.bind(kind=model.kind.value)
        delay = WATCH_RETRY_INITIAL
        while not self._stopped:
            logger.debug("Starting watch")
            try:
                async for event in self._store.watch(model, self._namespace):
                    delay = WATCH_RETRY_INITIAL
                    self.handle(event)
            except StoreError as e:
                if self._stopped:
                    break
                logger.warning(
                    "Watch failed, restarting",
                    error=str(e),
                    delay=delay.total_seconds(),
                )
            except Exception as e:
                if self._stopped:
                    break
                logger.exception(
                    "Uncaught exception in watch, restarting",
                    delay=delay.total_seconds(),
                )
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            else:
                logger.debug("Watch ended")
                break
            await asyncio.sleep(delay.total_seconds())
            delay = min(delay * 2, WATCH_RETRY_CAP)
            await self._resync_after_failure(logger)

    async def _resync_after_failure(self, logger: BoundLogger) -> None:
        try:
            await self.resync()
        except StoreError as e:
            logger.warning("Unable to list microservices", error=str(e))
