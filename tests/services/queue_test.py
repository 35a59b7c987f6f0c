"""Tests for the work queue."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from scalebit.models.domain.resource import ObjectKey
from scalebit.services.queue import WorkQueue

ORDERS = ObjectKey("shop", "orders")
PAYMENTS = ObjectKey("shop", "payments")


@pytest.mark.asyncio
async def test_coalesce() -> None:
    queue = WorkQueue()
    queue.add(ORDERS)
    queue.add(PAYMENTS)
    queue.add(ORDERS)
    assert len(queue) == 2

    assert await queue.get() == ORDERS
    assert await queue.get() == PAYMENTS
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_in_flight() -> None:
    queue = WorkQueue()
    queue.add(ORDERS)
    assert await queue.get() == ORDERS

    # Added again while a worker holds it: not handed out until done.
    queue.add(ORDERS)
    queue.add(ORDERS)
    assert len(queue) == 0
    queue.done(ORDERS)
    assert len(queue) == 1
    assert await queue.get() == ORDERS
    queue.done(ORDERS)
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_get_waits() -> None:
    queue = WorkQueue()
    task = asyncio.create_task(queue.get())
    await asyncio.sleep(0.01)
    assert not task.done()

    queue.add(ORDERS)
    assert await asyncio.wait_for(task, timeout=1) == ORDERS


@pytest.mark.asyncio
async def test_add_after() -> None:
    queue = WorkQueue()
    queue.add_after(ORDERS, timedelta(milliseconds=50))
    assert queue.waiting == 1
    assert len(queue) == 0

    assert await asyncio.wait_for(queue.get(), timeout=1) == ORDERS
    assert queue.waiting == 0

    # A zero delay adds immediately.
    queue.add_after(PAYMENTS, timedelta(0))
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_add_after_earliest() -> None:
    queue = WorkQueue()
    queue.add_after(ORDERS, timedelta(hours=1))
    queue.add_after(ORDERS, timedelta(milliseconds=10))
    queue.add_after(ORDERS, timedelta(hours=2))
    assert queue.waiting == 1

    assert await asyncio.wait_for(queue.get(), timeout=1) == ORDERS
    queue.shut_down()


@pytest.mark.asyncio
async def test_shut_down() -> None:
    queue = WorkQueue()
    waiter = asyncio.create_task(queue.get())
    await asyncio.sleep(0)
    queue.add_after(ORDERS, timedelta(hours=1))

    queue.shut_down()

    assert queue.shutting_down
    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert queue.waiting == 0
    queue.add(PAYMENTS)
    assert len(queue) == 0
    assert await queue.get() is None
