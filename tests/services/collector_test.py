"""Tests for garbage collection of orphaned managed resources."""

from __future__ import annotations

import pytest
from structlog.stdlib import BoundLogger

from scalebit.config import Config
from scalebit.models.domain.managed import (
    NetworkEndpoint,
    ScalingPolicy,
    WorkloadReplicaSet,
)
from scalebit.models.domain.microservice import Microservice
from scalebit.models.domain.resource import ObjectMeta, OwnerReference
from scalebit.services.builder import MicroserviceBuilder
from scalebit.services.collector import GarbageCollector
from scalebit.services.reconciler import Reconciler

from ..support.data import make_microservice
from ..support.store import FaultyStore


def make_reconciler(
    store: FaultyStore, config: Config, logger: BoundLogger
) -> Reconciler:
    return Reconciler(
        store=store,
        builder=MicroserviceBuilder(config),
        readiness_interval=config.readiness_interval,
        finalizer=False,
        logger=logger,
    )


@pytest.mark.asyncio
async def test_collect(config: Config, logger: BoundLogger) -> None:
    store = FaultyStore(logger, cascade=False)
    reconciler = make_reconciler(store, config, logger)
    collector = GarbageCollector(
        store=store, namespace=None, events=None, logger=logger
    )
    orders = await store.create(make_microservice())
    payments = await store.create(make_microservice("payments"))
    await reconciler.reconcile(orders.key)
    await reconciler.reconcile(payments.key)

    # Nothing is orphaned yet.
    assert await collector.collect() == 0

    await store.delete(Microservice, "shop", "orders")
    assert await collector.collect() == 3

    assert await store.get(WorkloadReplicaSet, "shop", "orders") is None
    assert await store.get(NetworkEndpoint, "shop", "orders") is None
    assert await store.get(ScalingPolicy, "shop", "orders-hpa") is None
    assert await store.get(WorkloadReplicaSet, "shop", "payments")
    assert await store.get(NetworkEndpoint, "shop", "payments")
    assert await store.get(ScalingPolicy, "shop", "payments-hpa")


@pytest.mark.asyncio
async def test_collect_stale_uid(config: Config, logger: BoundLogger) -> None:
    store = FaultyStore(logger, cascade=False)
    reconciler = make_reconciler(store, config, logger)
    collector = GarbageCollector(
        store=store, namespace="shop", events=None, logger=logger
    )
    first = await store.create(make_microservice())
    await reconciler.reconcile(first.key)
    await store.delete(Microservice, "shop", "orders")
    second = await store.create(make_microservice())

    assert await collector.collect() == 3

    # The new incarnation can now be reconciled normally.
    await reconciler.reconcile(second.key)
    workload = await store.get(WorkloadReplicaSet, "shop", "orders")
    assert workload
    assert second.owns(workload.metadata)


@pytest.mark.asyncio
async def test_collect_leaves_unowned(
    config: Config, logger: BoundLogger
) -> None:
    store = FaultyStore(logger, cascade=False)
    collector = GarbageCollector(
        store=store, namespace=None, events=None, logger=logger
    )
    microservice = make_microservice()
    microservice.metadata.uid = "e1f4a8a1-0000-4000-8000-000000000005"
    builder = MicroserviceBuilder(config)
    workload = builder.build_workload(microservice)
    endpoint = builder.build_endpoint(microservice)
    policy = builder.build_scaling_policy(microservice)

    # No controller at all.
    metadata = ObjectMeta(name="orders", namespace="shop")
    await store.create(workload.model_copy(update={"metadata": metadata}))

    # Controlled by something other than a microservice.
    other = OwnerReference(
        api_version="apps/v1",
        kind="ReplicaSet",
        name="orders",
        uid="f3a2c7e4-0000-4000-8000-000000000006",
        controller=True,
    )
    metadata = ObjectMeta(
        name="orders", namespace="shop", owner_references=[other]
    )
    await store.create(endpoint.model_copy(update={"metadata": metadata}))

    # Controlled by a microservice reference with no UID.
    reference = microservice.owner_reference.model_copy(update={"uid": ""})
    metadata = ObjectMeta(
        name="orders-hpa", namespace="shop", owner_references=[reference]
    )
    await store.create(policy.model_copy(update={"metadata": metadata}))

    assert await collector.collect() == 0
    assert await store.get(WorkloadReplicaSet, "shop", "orders")
    assert await store.get(NetworkEndpoint, "shop", "orders")
    assert await store.get(ScalingPolicy, "shop", "orders-hpa")


@pytest.mark.asyncio
async def test_collect_namespace(config: Config, logger: BoundLogger) -> None:
    store = FaultyStore(logger, cascade=False)
    reconciler = make_reconciler(store, config, logger)
    collector = GarbageCollector(
        store=store, namespace="admin", events=None, logger=logger
    )
    microservice = await store.create(make_microservice())
    await reconciler.reconcile(microservice.key)
    await store.delete(Microservice, "shop", "orders")

    assert await collector.collect() == 0
    assert await store.get(WorkloadReplicaSet, "shop", "orders")
