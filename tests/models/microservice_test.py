"""Tests for the microservice models."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from scalebit.constants import MICROSERVICE_API_VERSION
from scalebit.models.domain.microservice import Microservice, MicroserviceSpec
from scalebit.models.domain.resource import ObjectMeta, OwnerReference


def make_custom_object(**spec: Any) -> dict[str, Any]:
    return {
        "apiVersion": MICROSERVICE_API_VERSION,
        "kind": "Microservice",
        "metadata": {
            "name": "orders",
            "namespace": "shop",
            "uid": "1b6d9b43-0000-4000-8000-000000000001",
            "resourceVersion": "17",
            "generation": 3,
        },
        "spec": {"image": "orders:v1", "port": 8082, "replicas": 2, **spec},
    }


def test_from_kubernetes() -> None:
    obj = make_custom_object()
    obj["status"] = {"observedGeneration": 2, "readyReplicas": 1}
    microservice = Microservice.from_kubernetes(obj)

    assert microservice.key.namespace == "shop"
    assert microservice.key.name == "orders"
    assert str(microservice.key) == "shop/orders"
    assert microservice.metadata.generation == 3
    assert microservice.metadata.resource_version == "17"
    assert microservice.spec == MicroserviceSpec(
        image="orders:v1", port=8082, replicas=2
    )
    assert microservice.status.observed_generation == 2
    assert microservice.status.ready_replicas == 1


def test_from_kubernetes_without_status() -> None:
    microservice = Microservice.from_kubernetes(make_custom_object())
    assert microservice.status.observed_generation == 0
    assert microservice.status.ready_replicas == 0


@pytest.mark.parametrize(
    "spec",
    [
        {"replicas": 0},
        {"replicas": -1},
        {"port": -1},
        {"port": 2**31},
        {"image": ""},
    ],
)
def test_invalid_spec(spec: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        Microservice.from_kubernetes(make_custom_object(**spec))


def test_missing_spec_field() -> None:
    obj = make_custom_object()
    del obj["spec"]["image"]
    with pytest.raises(ValidationError):
        Microservice.from_kubernetes(obj)


def test_owner_reference() -> None:
    microservice = Microservice.from_kubernetes(make_custom_object())
    reference = microservice.owner_reference
    assert reference == OwnerReference(
        api_version=MICROSERVICE_API_VERSION,
        kind="Microservice",
        name="orders",
        uid="1b6d9b43-0000-4000-8000-000000000001",
        controller=True,
        block_owner_deletion=True,
    )


def test_owns() -> None:
    microservice = Microservice.from_kubernetes(make_custom_object())
    owned = ObjectMeta(
        name="orders",
        namespace="shop",
        owner_references=[microservice.owner_reference],
    )
    assert microservice.owns(owned)

    # Same name but an earlier incarnation of the microservice.
    stale = microservice.owner_reference.model_copy(update={"uid": "old"})
    assert not microservice.owns(
        ObjectMeta(name="orders", namespace="shop", owner_references=[stale])
    )

    # Not a controller reference.
    plain = microservice.owner_reference.model_copy(
        update={"controller": False}
    )
    assert not microservice.owns(
        ObjectMeta(name="orders", namespace="shop", owner_references=[plain])
    )

    assert not microservice.owns(ObjectMeta(name="orders", namespace="shop"))


def test_to_kubernetes() -> None:
    microservice = Microservice.from_kubernetes(make_custom_object())
    body = microservice.to_kubernetes()
    assert body["apiVersion"] == MICROSERVICE_API_VERSION
    assert body["kind"] == "Microservice"
    assert body["metadata"]["name"] == "orders"
    assert body["metadata"]["resourceVersion"] == "17"
    assert body["spec"] == {"image": "orders:v1", "port": 8082, "replicas": 2}
    assert body["status"] == {"observedGeneration": 0, "readyReplicas": 0}
