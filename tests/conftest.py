"""Test fixtures for Scalebit controller tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from pydantic import SecretStr
from safir.slack.webhook import SlackWebhookClient
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from scalebit.config import Config
from scalebit.constants import ROOT_LOGGER
from scalebit.factory import Factory
from scalebit.services.backoff import ExponentialBackoff, RetryScheduler
from scalebit.services.builder import MicroserviceBuilder
from scalebit.services.queue import WorkQueue
from scalebit.services.reconciler import Reconciler

from .support.config import configure
from .support.kubernetes import MockKubernetesCluster, patch_cluster
from .support.store import FaultyStore


@pytest.fixture(autouse=True)
def _mock_metrics(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_APPLICATION", "scalebit")
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.setenv("METRICS_MOCK", "true")


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return configure("standard")


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_slack: MockSlackWebhook
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(ROOT_LOGGER)


@pytest.fixture
def mock_cluster() -> Iterator[MockKubernetesCluster]:
    yield from patch_cluster()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(config.slack_webhook, respx_mock)
    config.slack_webhook = None


@pytest.fixture
def reconciler(
    config: Config, store: FaultyStore, logger: BoundLogger
) -> Reconciler:
    return Reconciler(
        store=store,
        builder=MicroserviceBuilder(config),
        readiness_interval=config.readiness_interval,
        finalizer=config.finalizer,
        logger=logger,
    )


@pytest.fixture
def scheduler(config: Config) -> RetryScheduler:
    backoff = ExponentialBackoff(
        config.backoff.base, config.backoff.cap, config.backoff.jitter
    )
    return RetryScheduler(WorkQueue(), backoff)


@pytest.fixture
def slack_client(
    config: Config, mock_slack: MockSlackWebhook, logger: BoundLogger
) -> SlackWebhookClient:
    assert config.slack_webhook
    return SlackWebhookClient(
        config.slack_webhook.get_secret_value(), config.name, logger
    )


@pytest_asyncio.fixture
async def store(logger: BoundLogger) -> AsyncIterator[FaultyStore]:
    """In-memory store with cascading deletion."""
    store = FaultyStore(logger)
    yield store
    await store.aclose()
