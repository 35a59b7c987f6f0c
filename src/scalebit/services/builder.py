"""Construction of the managed resources for a microservice."""

from __future__ import annotations

from ..config import Config
from ..constants import (
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    SCALING_POLICY_SUFFIX,
    SELECTOR_LABEL,
)
from ..models.domain.managed import (
    NetworkEndpoint,
    ScalingPolicy,
    WorkloadReplicaSet,
)
from ..models.domain.microservice import Microservice
from ..models.domain.resource import ObjectMeta

__all__ = ["MicroserviceBuilder"]


class MicroserviceBuilder:
    """Construct the desired managed resources for a microservice.

    Building is a pure function of the microservice and the configuration,
    so the same microservice always produces the same targets.

    Parameters
    ----------
    config
        Controller configuration.
    """

    def __init__(self, config: Config) -> None:
        self._config = config

    def build(
        self, microservice: Microservice
    ) -> tuple[WorkloadReplicaSet, NetworkEndpoint, ScalingPolicy]:
        """Build every managed resource, in creation order.

        Parameters
        ----------
        microservice
            Microservice whose resources should be built.

        Returns
        -------
        tuple of ManagedResource
            Workload, endpoint, and scaling policy, in that order.
        """
        return (
            self.build_workload(microservice),
            self.build_endpoint(microservice),
            self.build_scaling_policy(microservice),
        )

    def build_endpoint(self, microservice: Microservice) -> NetworkEndpoint:
        """Build the network endpoint for a microservice."""
        port = microservice.spec.port
        return NetworkEndpoint(
            metadata=self._build_metadata(microservice, microservice.key.name),
            selector=self._build_selector(microservice),
            port=port,
            target_port=port,
        )

    def build_scaling_policy(
        self, microservice: Microservice
    ) -> ScalingPolicy:
        """Build the scaling policy for a microservice.

        The upper bound is raised to the requested replica count, so that the
        autoscaler never scales the workload below what was asked for because
        of its own bounds.
        """
        name = microservice.key.name
        scaling = self._config.scaling
        return ScalingPolicy(
            metadata=self._build_metadata(
                microservice, name + SCALING_POLICY_SUFFIX
            ),
            target_name=name,
            min_replicas=scaling.min_replicas,
            max_replicas=max(scaling.max_replicas, microservice.spec.replicas),
            target_cpu_utilization=scaling.target_cpu_utilization,
        )

    def build_workload(self, microservice: Microservice) -> WorkloadReplicaSet:
        """Build the workload for a microservice."""
        name = microservice.key.name
        spec = microservice.spec
        selector = self._build_selector(microservice)
        annotations = {
            **self._config.pod_annotations,
            "prometheus.io/port": str(spec.port),
        }
        return WorkloadReplicaSet(
            metadata=self._build_metadata(microservice, name),
            replicas=spec.replicas,
            image=spec.image,
            port=spec.port,
            container_name=name,
            selector=selector,
            pod_labels={**selector, MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            pod_annotations=annotations,
        )

    def _build_metadata(
        self, microservice: Microservice, name: str
    ) -> ObjectMeta:
        return ObjectMeta(
            name=name,
            namespace=microservice.key.namespace,
            labels={
                SELECTOR_LABEL: microservice.key.name,
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
            },
            owner_references=[microservice.owner_reference],
        )

    def _build_selector(self, microservice: Microservice) -> dict[str, str]:
        return {SELECTOR_LABEL: microservice.key.name}
