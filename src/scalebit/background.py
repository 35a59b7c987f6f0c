"""Scalebit controller background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .constants import METRICS_INTERVAL
from .events import ControllerEvents, QueueDepthEvent
from .services.backoff import RetryScheduler
from .services.collector import GarbageCollector
from .services.notifier import ChangeNotifier
from .storage.base import MODELS

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage Scalebit controller background tasks.

    While the controller is running, it performs several periodic or
    continuous background tasks:

    #. Watch each kind of object in the store and queue the affected
       microservices.
    #. Periodically queue every microservice, in case a notification was
       missed.
    #. Periodically delete managed resources whose microservice is gone.
    #. Periodically publish the size of the work queue as a metric.

    This class only does the task management. All of the work is done by
    methods on the underlying service objects.

    Parameters
    ----------
    notifier
        Change notifier.
    collector
        Garbage collector, or `None` to disable garbage collection.
    scheduler
        Queue of microservices to reconcile.
    resync_interval
        How frequently to queue every microservice.
    collect_interval
        How frequently to run garbage collection.
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
        notifier: ChangeNotifier,
        collector: GarbageCollector | None,
        scheduler: RetryScheduler,
        resync_interval: timedelta,
        collect_interval: timedelta,
        events: ControllerEvents | None,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._notifier = notifier
        self._collector = collector
        self._scheduler = scheduler
        self._resync_interval = resync_interval
        self._collect_interval = collect_interval
        self._events = events
        self._slack = slack_client
        self._logger = logger

        self._jobs: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks.

        Every existing microservice is queued in the foreground once the
        watches have started, so that all of them are reconciled once after
        startup even if nothing changes.
        """
        if self._jobs:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._jobs = Scheduler()
        for model in MODELS.values():
            await self._jobs.spawn(self._notifier.watch(model))

        # Watches must subscribe before the listing so no change is missed.
        await asyncio.sleep(0)
        self._logger.info("Queuing existing microservices")
        count = await self._notifier.resync()
        self._logger.info("Queued existing microservices", count=count)

        coros = [
            self._loop(
                self._resync,
                self._resync_interval,
                "queuing all microservices",
            )
        ]
        if self._collector:
            coros.append(
                self._loop(
                    self._collect,
                    self._collect_interval,
                    "collecting orphaned resources",
                )
            )
        if self._events:
            coros.append(
                self._loop(
                    self._publish_queue_depth,
                    METRICS_INTERVAL,
                    "publishing queue depth",
                )
            )
        self._logger.info("Starting background tasks")
        for coro in coros:
            await self._jobs.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._jobs:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        self._notifier.stop()
        await self._jobs.close()
        self._jobs = None

    async def _collect(self) -> None:
        if self._collector:
            await self._collector.collect()

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run on every interval. This method always
        delays by the interval first before running the coroutine for the
        first time.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        await asyncio.sleep(interval.total_seconds())
        while True:
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                # On failure, log the exception but otherwise continue as
                # normal, including the delay.
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, elapsed=elapsed.total_seconds())
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() < 1:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
            else:
                await asyncio.sleep(delay.total_seconds())

    async def _publish_queue_depth(self) -> None:
        if not self._events:
            return
        event = QueueDepthEvent(
            depth=self._scheduler.depth, retrying=self._scheduler.retrying
        )
        await self._events.queue_depth.publish(event)

    async def _resync(self) -> None:
        await self._notifier.resync()
