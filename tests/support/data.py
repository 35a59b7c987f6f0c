"""Construct test objects."""

from __future__ import annotations

from scalebit.models.domain.microservice import Microservice, MicroserviceSpec
from scalebit.models.domain.resource import ObjectMeta

__all__ = ["make_microservice"]


def make_microservice(
    name: str = "orders",
    *,
    namespace: str = "shop",
    image: str = "orders:v1",
    port: int = 8082,
    replicas: int = 2,
) -> Microservice:
    """Build a new microservice, not yet stored.

    The defaults describe the ``orders`` microservice used throughout the
    tests.
    """
    return Microservice(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=MicroserviceSpec(image=image, port=port, replicas=replicas),
    )
