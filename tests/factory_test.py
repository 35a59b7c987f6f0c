"""End-to-end tests of the assembled controller."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from scalebit.factory import Factory
from scalebit.models.domain.managed import (
    NetworkEndpoint,
    ScalingPolicy,
    WorkloadReplicaSet,
)
from scalebit.models.domain.microservice import Microservice
from scalebit.storage.memory import MemoryResourceStore

from .support.data import make_microservice


async def wait_for(check: Callable[[], Awaitable[bool]]) -> None:
    for _ in range(200):
        if await check():
            return
        await asyncio.sleep(0.02)
    raise AssertionError("Condition never became true")


@pytest.mark.asyncio
async def test_controller(factory: Factory) -> None:
    store = factory.store
    assert isinstance(store, MemoryResourceStore)
    await factory.start_background_services()
    await store.create(make_microservice())

    async def reconciled() -> bool:
        microservice = await store.get(Microservice, "shop", "orders")
        assert microservice
        return microservice.status.observed_generation == 1

    await wait_for(reconciled)
    workload = await store.get(WorkloadReplicaSet, "shop", "orders")
    assert workload
    assert workload.replicas == 2
    assert await store.get(NetworkEndpoint, "shop", "orders")
    assert await store.get(ScalingPolicy, "shop", "orders-hpa")

    # Readiness is picked up by the periodic check.
    await store.report_ready_replicas("shop", "orders", 2)

    async def ready() -> bool:
        microservice = await store.get(Microservice, "shop", "orders")
        assert microservice
        return microservice.status.ready_replicas == 2

    await wait_for(ready)

    # Drift in a managed resource is repaired.
    workload = await store.get(WorkloadReplicaSet, "shop", "orders")
    assert workload
    await store.update(workload.model_copy(update={"replicas": 7}))

    async def repaired() -> bool:
        workload = await store.get(WorkloadReplicaSet, "shop", "orders")
        assert workload
        return workload.replicas == 2

    await wait_for(repaired)

    # Deleting the microservice removes everything it owns.
    await store.delete(Microservice, "shop", "orders")
    assert await store.get(WorkloadReplicaSet, "shop", "orders") is None
    assert await store.get(NetworkEndpoint, "shop", "orders") is None
    assert await store.get(ScalingPolicy, "shop", "orders-hpa") is None


@pytest.mark.asyncio
async def test_create_reconciler(factory: Factory) -> None:
    await factory.store.create(make_microservice())
    reconciler = factory.create_reconciler()

    result = await reconciler.reconcile(make_microservice().key)

    assert result.changed
    assert not result.done
    collector = factory.create_collector()
    assert await collector.collect() == 0
