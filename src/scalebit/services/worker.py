"""Pool of workers that reconcile queued microservices."""

from __future__ import annotations

from datetime import datetime, timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..events import (
    ControllerEvents,
    ReconcileFailureEvent,
    ReconcileSuccessEvent,
)
from ..exceptions import (
    InvariantViolationError,
    OwnershipConflictError,
    StoreError,
)
from ..models.domain.reconcile import ReconcileResult
from ..models.domain.resource import ObjectKey
from .backoff import RetryScheduler
from .reconciler import Reconciler

__all__ = ["WorkerPool"]


class WorkerPool:
    """Fixed pool of workers pulling microservices from the work queue.

    Each worker takes a key from the queue, reconciles it, and then schedules
    whatever follow-up the result requires: nothing once converged, a fixed
    delay while waiting for readiness, or a retry with backoff after a
    failure. Failures are never fatal to the worker.

    Parameters
    ----------
    reconciler
        Reconciler for a single microservice.
    scheduler
        Queue of microservices to reconcile.
    workers
        Number of workers.
    shutdown_timeout
        How long to wait for in-progress passes when stopping.
    events
        Event publishers, if metrics events should be published.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        reconciler: Reconciler,
        scheduler: RetryScheduler,
        workers: int,
        shutdown_timeout: timedelta,
        events: ControllerEvents | None,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._reconciler = reconciler
        self._scheduler = scheduler
        self._workers = workers
        self._shutdown_timeout = shutdown_timeout
        self._events = events
        self._slack = slack_client
        self._logger = logger

        self._jobs: Scheduler | None = None

    async def start(self) -> None:
        """Start the workers."""
        if self._jobs:
            self._logger.warning("Workers already running, cannot start")
            return
        self._jobs = Scheduler()
        self._logger.info("Starting workers", count=self._workers)
        for _ in range(self._workers):
            await self._jobs.spawn(self._run())

    async def stop(self) -> None:
        """Stop the workers.

        The work queue must already have been shut down, so that idle
        workers exit. Workers still reconciling are given until the shutdown
        timeout to finish and are then cancelled.
        """
        if not self._jobs:
            self._logger.warning("Workers were already stopped")
            return
        self._logger.info("Waiting for workers to finish")
        timeout = self._shutdown_timeout.total_seconds()
        await self._jobs.wait_and_close(timeout=timeout)
        self._jobs = None

    async def process(self, key: ObjectKey) -> ReconcileResult | None:
        """Reconcile one microservice and schedule any follow-up.

        Parameters
        ----------
        key
            Microservice to reconcile.

        Returns
        -------
        ReconcileResult or None
            Result of the pass, or `None` if it failed.
        """
        start = current_datetime(microseconds=True)
        try:
            result = await self._reconciler.reconcile(key)
        except Exception as e:
            await self._handle_failure(key, e, start)
            return None
        elapsed = current_datetime(microseconds=True) - start

        if result.requeue_after:
            self._scheduler.add_after(key, result.requeue_after)
        else:
            self._scheduler.forget(key)
        if self._events:
            event = ReconcileSuccessEvent(
                namespace=key.namespace,
                name=key.name,
                elapsed=elapsed,
                changed=result.changed,
            )
            await self._events.reconcile_success.publish(event)
        return result

    async def _handle_failure(
        self, key: ObjectKey, exc: Exception, start: datetime
    ) -> None:
        elapsed = current_datetime(microseconds=True) - start
        delay = self._scheduler.add_rate_limited(key)
        attempts = self._scheduler.attempts(key)
        logger = self._logger.bind(
            namespace=key.namespace,
            name=key.name,
            attempts=attempts,
            retry_delay=delay.total_seconds(),
        )
        match exc:
            case InvariantViolationError() | OwnershipConflictError():
                logger.error("Cannot reconcile microservice", error=str(exc))
                alert = True
            case StoreError():
                logger.warning("Reconciliation failed", error=str(exc))
                alert = False
            case _:
                logger.exception("Uncaught exception in reconcile")
                alert = True

        # Alert only on the first failure of a streak.
        if alert and attempts == 1 and self._slack:
            if isinstance(exc, SlackException):
                await self._slack.post_exception(exc)
            else:
                await self._slack.post_uncaught_exception(exc)
        if self._events:
            event = ReconcileFailureEvent(
                namespace=key.namespace,
                name=key.name,
                elapsed=elapsed,
                error=type(exc).__name__,
                attempts=attempts,
            )
            await self._events.reconcile_failure.publish(event)

    async def _run(self) -> None:
        while (key := await self._scheduler.get()) is not None:
            try:
                await self.process(key)
            except Exception:
                # Follow-up work was scheduled before reporting began.
                self._logger.exception(
                    "Uncaught exception reporting reconcile result",
                    namespace=key.namespace,
                    name=key.name,
                )
            finally:
                self._scheduler.done(key)
