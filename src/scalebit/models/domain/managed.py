"""Models for the resources the reconciler creates for a microservice.

Each managed kind has its own model. All of them share the same small
interface used by the reconciler and the stores:

``matches``
    Whether a live object already satisfies a freshly built target.
``with_target``
    A copy of the live object with the target's managed fields applied,
    keeping the live identity and resource version.
``to_kubernetes``, ``update_kubernetes``, ``from_kubernetes``
    Conversion to and from the ``kubernetes_asyncio`` object models.
"""

from __future__ import annotations

from typing import ClassVar, Self

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V2CrossVersionObjectReference,
    V2HorizontalPodAutoscaler,
    V2HorizontalPodAutoscalerSpec,
    V2MetricSpec,
    V2MetricTarget,
    V2ResourceMetricSource,
)
from pydantic import BaseModel

from .kubernetes import ServiceProtocol
from .resource import ObjectMeta, ResourceKind

__all__ = [
    "ManagedResource",
    "NetworkEndpoint",
    "ScalingPolicy",
    "WorkloadReplicaSet",
]


def _contains(current: dict[str, str], wanted: dict[str, str]) -> bool:
    """Whether every key and value in ``wanted`` is also in ``current``.

    Other controllers and humans may add their own labels and annotations,
    which are left alone.
    """
    return all(current.get(k) == v for k, v in wanted.items())


def _merged_metadata(current: ObjectMeta, target: ObjectMeta) -> ObjectMeta:
    return current.model_copy(
        update={
            "labels": {**current.labels, **target.labels},
            "annotations": {**current.annotations, **target.annotations},
        }
    )


def _update_kubernetes_metadata(
    metadata: V1ObjectMeta, target: ObjectMeta
) -> None:
    metadata.labels = {**(metadata.labels or {}), **target.labels}
    if target.annotations:
        metadata.annotations = {
            **(metadata.annotations or {}),
            **target.annotations,
        }


class WorkloadReplicaSet(BaseModel):
    """Set of identical pods running the microservice image.

    Backed by a Kubernetes ``Deployment``.
    """

    kind: ClassVar[ResourceKind] = ResourceKind.WORKLOAD_REPLICA_SET

    status_fields: ClassVar[frozenset[str]] = frozenset({"ready_replicas"})
    """Fields reported by the store rather than written by the reconciler."""

    metadata: ObjectMeta

    replicas: int
    """Desired number of pods."""

    image: str
    """Container image."""

    port: int
    """Container port."""

    container_name: str
    """Name of the single application container."""

    selector: dict[str, str]
    """Labels used to select the pods of this workload."""

    pod_labels: dict[str, str]
    """Labels on the pod template. Must include the selector."""

    pod_annotations: dict[str, str] = {}
    """Annotations on the pod template."""

    ready_replicas: int = 0
    """Number of ready pods, as observed by the store."""

    @classmethod
    def from_kubernetes(cls, deployment: V1Deployment) -> Self:
        """Create from a Kubernetes ``Deployment``."""
        spec = deployment.spec
        name = deployment.metadata.name
        containers = spec.template.spec.containers
        container = next((c for c in containers if c.name == name), None)
        container = container or containers[0]
        ports = container.ports or []
        template_metadata = spec.template.metadata or V1ObjectMeta()
        status = deployment.status
        return cls(
            metadata=ObjectMeta.from_kubernetes(deployment.metadata),
            replicas=spec.replicas if spec.replicas is not None else 1,
            image=container.image or "",
            port=ports[0].container_port if ports else 0,
            container_name=container.name,
            selector=spec.selector.match_labels or {},
            pod_labels=template_metadata.labels or {},
            pod_annotations=template_metadata.annotations or {},
            ready_replicas=(status.ready_replicas or 0) if status else 0,
        )

    def matches(self, target: Self) -> bool:
        return (
            self.replicas == target.replicas
            and self.image == target.image
            and self.port == target.port
            and self.container_name == target.container_name
            and self.selector == target.selector
            and _contains(self.pod_labels, target.pod_labels)
            and _contains(self.pod_annotations, target.pod_annotations)
            and _contains(self.metadata.labels, target.metadata.labels)
        )

    def with_target(self, target: Self) -> Self:
        return self.model_copy(
            update={
                "metadata": _merged_metadata(self.metadata, target.metadata),
                "replicas": target.replicas,
                "image": target.image,
                "port": target.port,
                "container_name": target.container_name,
                "selector": target.selector,
                "pod_labels": {**self.pod_labels, **target.pod_labels},
                "pod_annotations": {
                    **self.pod_annotations,
                    **target.pod_annotations,
                },
            }
        )

    def to_kubernetes(self) -> V1Deployment:
        """Convert to a new Kubernetes ``Deployment``."""
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=self.metadata.to_kubernetes(),
            spec=V1DeploymentSpec(
                replicas=self.replicas,
                selector=V1LabelSelector(match_labels=self.selector),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(
                        labels=self.pod_labels,
                        annotations=self.pod_annotations or None,
                    ),
                    spec=V1PodSpec(containers=[self._build_container()]),
                ),
            ),
        )

    def update_kubernetes(self, deployment: V1Deployment) -> None:
        """Apply the managed fields to an existing ``Deployment`` in place.

        Fields this model does not manage, including ones defaulted by the
        API server, are preserved. If no container has the expected name,
        the application container can no longer be told apart from any
        others, so the container list is replaced outright.
        """
        _update_kubernetes_metadata(deployment.metadata, self.metadata)
        spec = deployment.spec
        spec.replicas = self.replicas
        spec.selector = V1LabelSelector(match_labels=self.selector)
        template_metadata = spec.template.metadata or V1ObjectMeta()
        template_metadata.labels = {
            **(template_metadata.labels or {}),
            **self.pod_labels,
        }
        template_metadata.annotations = {
            **(template_metadata.annotations or {}),
            **self.pod_annotations,
        }
        spec.template.metadata = template_metadata
        containers = spec.template.spec.containers or []
        for container in containers:
            if container.name == self.container_name:
                container.image = self.image
                container.ports = [V1ContainerPort(container_port=self.port)]
                break
        else:
            spec.template.spec.containers = [self._build_container()]

    def _build_container(self) -> V1Container:
        return V1Container(
            name=self.container_name,
            image=self.image,
            ports=[V1ContainerPort(container_port=self.port)],
        )


class NetworkEndpoint(BaseModel):
    """Stable network endpoint in front of the workload pods.

    Backed by a Kubernetes ``Service``.
    """

    kind: ClassVar[ResourceKind] = ResourceKind.NETWORK_ENDPOINT

    status_fields: ClassVar[frozenset[str]] = frozenset()

    metadata: ObjectMeta

    selector: dict[str, str]
    """Labels of the pods that receive traffic."""

    port: int
    """Port exposed by the endpoint."""

    target_port: int | str
    """Port on the pods to which traffic is sent."""

    protocol: ServiceProtocol = ServiceProtocol.TCP

    @classmethod
    def from_kubernetes(cls, service: V1Service) -> Self:
        """Create from a Kubernetes ``Service``."""
        ports = service.spec.ports or []
        port = ports[0] if ports else V1ServicePort(port=0)
        target_port = port.target_port
        if target_port is None:
            target_port = port.port
        elif isinstance(target_port, str) and target_port.isdigit():
            target_port = int(target_port)
        return cls(
            metadata=ObjectMeta.from_kubernetes(service.metadata),
            selector=service.spec.selector or {},
            port=port.port,
            target_port=target_port,
            protocol=ServiceProtocol(port.protocol or "TCP"),
        )

    def matches(self, target: Self) -> bool:
        return (
            self.selector == target.selector
            and self.port == target.port
            and self.target_port == target.target_port
            and self.protocol == target.protocol
            and _contains(self.metadata.labels, target.metadata.labels)
        )

    def with_target(self, target: Self) -> Self:
        return self.model_copy(
            update={
                "metadata": _merged_metadata(self.metadata, target.metadata),
                "selector": target.selector,
                "port": target.port,
                "target_port": target.target_port,
                "protocol": target.protocol,
            }
        )

    def to_kubernetes(self) -> V1Service:
        """Convert to a new Kubernetes ``Service``."""
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.metadata.to_kubernetes(),
            spec=V1ServiceSpec(
                selector=self.selector, ports=[self._build_port()]
            ),
        )

    def update_kubernetes(self, service: V1Service) -> None:
        """Apply the managed fields to an existing ``Service`` in place.

        The cluster IP and any other server-assigned fields are preserved.
        """
        _update_kubernetes_metadata(service.metadata, self.metadata)
        service.spec.selector = self.selector
        service.spec.ports = [self._build_port()]

    def _build_port(self) -> V1ServicePort:
        return V1ServicePort(
            port=self.port,
            target_port=self.target_port,
            protocol=self.protocol.value,
        )


class ScalingPolicy(BaseModel):
    """Autoscaling bounds for the workload.

    Backed by an ``autoscaling/v2`` ``HorizontalPodAutoscaler``.
    """

    kind: ClassVar[ResourceKind] = ResourceKind.SCALING_POLICY

    status_fields: ClassVar[frozenset[str]] = frozenset()

    metadata: ObjectMeta

    target_api_version: str = "apps/v1"
    """API version of the scaled object."""

    target_kind: str = "Deployment"
    """Kind of the scaled object."""

    target_name: str
    """Name of the scaled workload."""

    min_replicas: int
    """Lower replica bound."""

    max_replicas: int
    """Upper replica bound."""

    target_cpu_utilization: int | None
    """Target average CPU utilization in percent."""

    @classmethod
    def from_kubernetes(cls, hpa: V2HorizontalPodAutoscaler) -> Self:
        """Create from a Kubernetes ``HorizontalPodAutoscaler``."""
        spec = hpa.spec
        utilization = None
        for metric in spec.metrics or []:
            if metric.type == "Resource" and metric.resource.name == "cpu":
                utilization = metric.resource.target.average_utilization
                break
        return cls(
            metadata=ObjectMeta.from_kubernetes(hpa.metadata),
            target_api_version=spec.scale_target_ref.api_version,
            target_kind=spec.scale_target_ref.kind,
            target_name=spec.scale_target_ref.name,
            min_replicas=spec.min_replicas or 1,
            max_replicas=spec.max_replicas,
            target_cpu_utilization=utilization,
        )

    def matches(self, target: Self) -> bool:
        return (
            self.target_api_version == target.target_api_version
            and self.target_kind == target.target_kind
            and self.target_name == target.target_name
            and self.min_replicas == target.min_replicas
            and self.max_replicas == target.max_replicas
            and self.target_cpu_utilization == target.target_cpu_utilization
            and _contains(self.metadata.labels, target.metadata.labels)
        )

    def with_target(self, target: Self) -> Self:
        return self.model_copy(
            update={
                "metadata": _merged_metadata(self.metadata, target.metadata),
                "target_api_version": target.target_api_version,
                "target_kind": target.target_kind,
                "target_name": target.target_name,
                "min_replicas": target.min_replicas,
                "max_replicas": target.max_replicas,
                "target_cpu_utilization": target.target_cpu_utilization,
            }
        )

    def to_kubernetes(self) -> V2HorizontalPodAutoscaler:
        """Convert to a new Kubernetes ``HorizontalPodAutoscaler``."""
        return V2HorizontalPodAutoscaler(
            api_version="autoscaling/v2",
            kind="HorizontalPodAutoscaler",
            metadata=self.metadata.to_kubernetes(),
            spec=self._build_spec(),
        )

    def update_kubernetes(self, hpa: V2HorizontalPodAutoscaler) -> None:
        """Apply the managed fields to an existing autoscaler in place."""
        _update_kubernetes_metadata(hpa.metadata, self.metadata)
        spec = self._build_spec()
        spec.behavior = hpa.spec.behavior
        hpa.spec = spec

    def _build_spec(self) -> V2HorizontalPodAutoscalerSpec:
        metrics = None
        if self.target_cpu_utilization is not None:
            target = V2MetricTarget(
                type="Utilization",
                average_utilization=self.target_cpu_utilization,
            )
            metrics = [
                V2MetricSpec(
                    type="Resource",
                    resource=V2ResourceMetricSource(name="cpu", target=target),
                )
            ]
        return V2HorizontalPodAutoscalerSpec(
            scale_target_ref=V2CrossVersionObjectReference(
                api_version=self.target_api_version,
                kind=self.target_kind,
                name=self.target_name,
            ),
            min_replicas=self.min_replicas,
            max_replicas=self.max_replicas,
            metrics=metrics,
        )


type ManagedResource = WorkloadReplicaSet | NetworkEndpoint | ScalingPolicy
"""Any resource created by the reconciler for a microservice."""
