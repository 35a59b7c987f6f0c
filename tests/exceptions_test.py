"""Tests for exception formatting."""

from __future__ import annotations

import pytest
from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.slack.blockkit import SlackCodeBlock, SlackTextBlock

from scalebit.exceptions import (
    InvariantViolationError,
    KubernetesError,
    ObjectConflictError,
    OwnershipConflictError,
)
from scalebit.models.domain.microservice import MicroserviceSpec


def test_store_error() -> None:
    exc = ApiException(status=422, reason="Unprocessable Entity")
    error = KubernetesError.from_exception(
        "Cannot create object",
        exc,
        kind="Deployment",
        namespace="shop",
        name="orders",
    )

    assert str(error) == (
        "Cannot create object (Deployment shop/orders, status 422):"
        " Unprocessable Entity"
    )
    message = error.to_slack()
    assert message.message == (
        "Cannot create object (Deployment shop/orders, status 422)"
    )
    assert message.fields[-1].heading == "Status"
    assert SlackTextBlock(
        heading="Object", text="Deployment shop/orders"
    ) in message.blocks
    assert SlackCodeBlock(
        heading="Error", code="Unprocessable Entity"
    ) in message.blocks


def test_store_error_kind_only() -> None:
    error = ObjectConflictError("Cannot list objects", kind="Service")
    assert str(error) == "Cannot list objects (Service)"

    error = ObjectConflictError(
        "Cannot list objects", kind="Service", namespace="shop"
    )
    message = error.to_slack()
    assert SlackTextBlock(
        heading="Object", text="Service in namespace shop"
    ) in message.blocks


def test_ownership_conflict() -> None:
    error = OwnershipConflictError(
        kind="Service",
        namespace="shop",
        name="orders",
        owner="ReplicaSet legacy (a5e5a6f0)",
    )
    assert str(error) == (
        "Service shop/orders is controlled by ReplicaSet legacy (a5e5a6f0)"
    )
    message = error.to_slack()
    assert SlackTextBlock(
        heading="Object", text="Service shop/orders"
    ) in message.blocks

    error = OwnershipConflictError(
        kind="Deployment", namespace="shop", name="orders", owner=None
    )
    assert str(error) == "Deployment shop/orders exists without a controller"


def test_invariant_violation() -> None:
    with pytest.raises(ValidationError) as excinfo:
        MicroserviceSpec.model_validate(
            {"image": "orders:v1", "port": 8082, "replicas": 0}
        )
    error = InvariantViolationError.from_exception(
        excinfo.value, namespace="shop", name="orders"
    )

    assert "shop/orders" in str(error)
    assert "replicas" in error.error
    message = error.to_slack()
    assert any(
        isinstance(b, SlackCodeBlock) and "replicas" in b.code
        for b in message.blocks
    )
