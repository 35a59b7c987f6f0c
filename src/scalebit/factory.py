"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.kubernetes import initialize_kubernetes
from safir.metrics import EventManager
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config, StoreBackend
from .events import ControllerEvents
from .services.backoff import ExponentialBackoff, RetryScheduler
from .services.builder import MicroserviceBuilder
from .services.collector import GarbageCollector
from .services.notifier import ChangeNotifier
from .services.queue import WorkQueue
from .services.reconciler import Reconciler
from .services.worker import WorkerPool
from .storage.base import ResourceStore
from .storage.kubernetes.store import KubernetesResourceStore
from .storage.memory import MemoryResourceStore

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global controller state.

    This object holds all of the per-process singletons. It is used by the
    `Factory` class as a source of dependencies to inject into created service
    objects.
    """

    config: Config
    """Controller configuration."""

    store: ResourceStore
    """Resource store holding microservices and their managed resources."""

    kubernetes_client: ApiClient | None
    """Shared Kubernetes client, if the Kubernetes store is in use."""

    event_manager: EventManager
    """Manager for metrics event publishers."""

    events: ControllerEvents
    """Event publishers for controller events."""

    scheduler: RetryScheduler
    """Queue of microservices to reconcile."""

    background: BackgroundTaskManager
    """Watches and periodic tasks."""

    workers: WorkerPool
    """Workers that reconcile queued microservices."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the controller configuration.

        Parameters
        ----------
        config
            Controller configuration.

        Returns
        -------
        ProcessContext
            Shared context for a controller process.
        """
        logger = structlog.get_logger(__name__)

        kubernetes_client = None
        match config.backend:
            case StoreBackend.KUBERNETES:
                await initialize_kubernetes()
                kubernetes_client = ApiClient()
                store: ResourceStore = KubernetesResourceStore(
                    kubernetes_client, config.request_timeout, logger
                )
            case StoreBackend.MEMORY:
                store = MemoryResourceStore(logger)

        event_manager = config.metrics.make_manager()
        await event_manager.initialize()
        events = ControllerEvents()
        await events.initialize(event_manager)

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), config.name, logger
            )

        backoff = ExponentialBackoff(
            config.backoff.base, config.backoff.cap, config.backoff.jitter
        )
        scheduler = RetryScheduler(WorkQueue(), backoff)
        reconciler = Reconciler(
            store=store,
            builder=MicroserviceBuilder(config),
            readiness_interval=config.readiness_interval,
            finalizer=config.finalizer,
            logger=logger,
        )
        notifier = ChangeNotifier(
            store=store,
            scheduler=scheduler,
            namespace=config.namespace,
            logger=logger,
            slack_client=slack_client,
        )
        collector = None
        if config.garbage_collection.enabled:
            collector = GarbageCollector(
                store=store,
                namespace=config.namespace,
                events=events,
                logger=logger,
            )
        return cls(
            config=config,
            store=store,
            kubernetes_client=kubernetes_client,
            event_manager=event_manager,
            events=events,
            scheduler=scheduler,
            background=BackgroundTaskManager(
                notifier=notifier,
                collector=collector,
                scheduler=scheduler,
                resync_interval=config.resync_interval,
                collect_interval=config.garbage_collection.interval,
                events=events,
                slack_client=slack_client,
                logger=logger,
            ),
            workers=WorkerPool(
                reconciler=reconciler,
                scheduler=scheduler,
                workers=config.workers,
                shutdown_timeout=config.shutdown_timeout,
                events=events,
                slack_client=slack_client,
                logger=logger,
            ),
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.store.aclose()
        await self.event_manager.aclose()
        if self.kubernetes_client:
            await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the workers and background tasks."""
        await self.workers.start()
        await self.background.start()

    async def stop(self) -> None:
        """Stop the controller.

        Watches and periodic tasks are stopped first, so no new work is
        queued. Workers then finish any pass already in progress, up to the
        shutdown timeout.
        """
        await self.background.stop()
        self.scheduler.shut_down()
        await self.workers.stop()


class Factory:
    """Build Scalebit controller components.

    Uses the contents of a `ProcessContext` to construct the components of the
    controller on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for controller components.

        Intended for the command-line interface or the test suite.

        Parameters
        ----------
        config
            Controller configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger
        self._background_services_started = False

    @property
    def scheduler(self) -> RetryScheduler:
        """Global work queue, from the `ProcessContext`."""
        return self._context.scheduler

    @property
    def store(self) -> ResourceStore:
        """Global resource store, from the `ProcessContext`."""
        return self._context.store

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    def create_builder(self) -> MicroserviceBuilder:
        """Create a builder for managed resources.

        Returns
        -------
        MicroserviceBuilder
            Newly-created builder.
        """
        return MicroserviceBuilder(self._context.config)

    def create_collector(self) -> GarbageCollector:
        """Create a garbage collector.

        Returns
        -------
        GarbageCollector
            Newly-created garbage collector, used regardless of whether
            periodic garbage collection is enabled.
        """
        return GarbageCollector(
            store=self._context.store,
            namespace=self._context.config.namespace,
            events=self._context.events,
            logger=self._logger,
        )

    def create_reconciler(self) -> Reconciler:
        """Create a reconciler for single microservices.

        Returns
        -------
        Reconciler
            Newly-created reconciler.
        """
        config = self._context.config
        return Reconciler(
            store=self._context.store,
            builder=self.create_builder(),
            readiness_interval=config.readiness_interval,
            finalizer=config.finalizer,
            logger=self._logger,
        )

    async def start_background_services(self) -> None:
        """Start the workers and background tasks.

        Stopped automatically when the factory is closed.
        """
        await self._context.start()
        self._background_services_started = True
