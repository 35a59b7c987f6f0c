"""Tests for the Kubernetes storage layer that need no API server."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Self
from unittest.mock import AsyncMock

import pytest
from aiohttp import ClientConnectionError
from kubernetes_asyncio.client import (
    ApiException,
    V1Deployment,
    V1ObjectMeta,
    V1Service,
)
from structlog.stdlib import BoundLogger

from scalebit.exceptions import (
    InvariantViolationError,
    KubernetesError,
    ObjectConflictError,
    ObjectExistsError,
    ObjectNotFoundError,
    StoreError,
    TransientStoreError,
)
from scalebit.models.domain.kubernetes import WatchEventType
from scalebit.storage.kubernetes.call import kubernetes_call
from scalebit.storage.kubernetes.store import parse_microservice
from scalebit.storage.kubernetes.watcher import KubernetesWatcher, WatchEvent

TIMEOUT = timedelta(seconds=5)


class ScriptedWatch:
    """Replacement for the client watch API that replays scripted streams.

    Each call to ``stream`` consumes the next script, yielding its events
    and raising any exception found in it.
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self.scripts = list(scripts)
        self.calls: list[dict[str, Any]] = []

    def __call__(self, return_type: Any = None) -> Self:
        return self

    @asynccontextmanager
    async def stream(
        self, method: Any, **kwargs: Any
    ) -> AsyncIterator[AsyncIterator[dict[str, Any]]]:
        self.calls.append(kwargs)
        yield self._replay(self.scripts.pop(0))

    def stop(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def _replay(
        self, script: list[Any]
    ) -> AsyncIterator[dict[str, Any]]:
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item


def make_service_event(resource_version: str) -> dict[str, Any]:
    metadata = V1ObjectMeta(
        name="orders", namespace="shop", resource_version=resource_version
    )
    return {"type": "MODIFIED", "object": V1Service(metadata=metadata)}


def make_object(spec: dict[str, object]) -> dict[str, object]:
    return {
        "apiVersion": "scalebit.moodykhalif23.github.com/v1alpha1",
        "kind": "Microservice",
        "metadata": {
            "name": "orders",
            "namespace": "shop",
            "uid": "0d3f8a52-0000-4000-8000-000000000001",
            "resourceVersion": "17",
            "generation": 1,
        },
        "spec": spec,
    }


def test_parse_microservice() -> None:
    obj = make_object({"image": "orders:v1", "port": 8082, "replicas": 2})
    microservice = parse_microservice(obj)
    assert microservice.spec.replicas == 2

    obj = make_object({"image": "orders:v1", "port": -1, "replicas": 2})
    with pytest.raises(InvariantViolationError) as excinfo:
        parse_microservice(obj)
    assert excinfo.value.namespace == "shop"
    assert excinfo.value.name == "orders"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "creating", "error"),
    [
        (404, False, ObjectNotFoundError),
        (409, True, ObjectExistsError),
        (409, False, ObjectConflictError),
        (429, False, TransientStoreError),
        (500, False, TransientStoreError),
        (503, True, TransientStoreError),
        (400, False, KubernetesError),
        (403, True, KubernetesError),
    ],
)
async def test_call_status(
    status: int, creating: bool, error: type[StoreError]
) -> None:
    with pytest.raises(error) as excinfo:
        async with kubernetes_call(
            "Cannot create object",
            TIMEOUT,
            kind="Deployment",
            namespace="shop",
            name="orders",
            creating=creating,
        ):
            raise ApiException(status=status, reason="Failed")
    assert type(excinfo.value) is error
    assert excinfo.value.status == status
    assert excinfo.value.name == "orders"


@pytest.mark.asyncio
async def test_call_timeout() -> None:
    with pytest.raises(TransientStoreError, match="timed out"):
        async with kubernetes_call(
            "Cannot read object",
            timedelta(milliseconds=10),
            kind="Service",
            namespace="shop",
            name="orders",
        ):
            await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_call_connection_error() -> None:
    with pytest.raises(TransientStoreError) as excinfo:
        async with kubernetes_call(
            "Cannot list objects", TIMEOUT, kind="Service"
        ):
            raise ClientConnectionError("Connection refused")
    assert "ClientConnectionError" in str(excinfo.value)
    assert excinfo.value.status is None


def test_watch_event() -> None:
    deployment = V1Deployment()
    event = WatchEvent.from_event(
        {"type": "ADDED", "object": deployment}, V1Deployment
    )
    assert event
    assert event.action == WatchEventType.ADDED
    assert event.object is deployment

    event = WatchEvent.from_event(
        {"type": "BOOKMARK", "object": deployment}, V1Deployment
    )
    assert event is None

    with pytest.raises(TypeError):
        WatchEvent.from_event({"type": "MODIFIED", "object": {}}, V1Deployment)


@pytest.mark.asyncio
async def test_watcher_resume(
    logger: BoundLogger, monkeypatch: pytest.MonkeyPatch
) -> None:
    scripted = ScriptedWatch(
        [make_service_event("5"), ApiException(status=410, reason="Gone")],
        [make_service_event("9")],
        [ApiException(status=403, reason="Forbidden")],
    )
    monkeypatch.setattr(
        "scalebit.storage.kubernetes.watcher.Watch", scripted
    )
    watcher = KubernetesWatcher(
        method=AsyncMock(),
        object_type=V1Service,
        kind="Service",
        namespace="shop",
        logger=logger,
    )

    versions = []
    with pytest.raises(KubernetesError) as excinfo:
        async for event in watcher.watch():
            versions.append(event.object.metadata.resource_version)
    assert versions == ["5", "9"]
    assert excinfo.value.status == 403

    # An expired version restarts from the current state, and a watch that
    # simply ended resumes from the last version seen.
    assert scripted.calls[0]["namespace"] == "shop"
    assert "resource_version" not in scripted.calls[0]
    assert "resource_version" not in scripted.calls[1]
    assert scripted.calls[2]["resource_version"] == "9"
