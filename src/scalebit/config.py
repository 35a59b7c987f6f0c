"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.metrics import MetricsConfiguration, metrics_configuration_factory
from safir.pydantic import HumanTimedelta

from .constants import DEFAULT_POD_ANNOTATIONS

__all__ = [
    "BackoffConfig",
    "Config",
    "GarbageCollectionConfig",
    "ScalingConfig",
    "StoreBackend",
]


class StoreBackend(Enum):
    """Which resource store the controller uses."""

    KUBERNETES = "kubernetes"
    MEMORY = "memory"


class BackoffConfig(BaseModel):
    """Retry backoff after a failed reconciliation."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    base: Annotated[
        HumanTimedelta,
        Field(
            title="Base delay",
            description="Delay before the first retry after a failure",
        ),
    ] = timedelta(milliseconds=500)

    cap: Annotated[
        HumanTimedelta,
        Field(
            title="Maximum delay",
            description="Upper bound on the delay between retries",
        ),
    ] = timedelta(minutes=5)

    jitter: Annotated[
        float,
        Field(
            title="Jitter factor",
            description=(
                "Each delay is multiplied by a random factor between 1 and 1"
                " plus this value, then capped again"
            ),
            ge=0.0,
            le=1.0,
        ),
    ] = 0.1

    @model_validator(mode="after")
    def _validate_cap(self) -> Self:
        if self.cap < self.base:
            raise ValueError("Backoff cap must not be less than base delay")
        return self


class GarbageCollectionConfig(BaseModel):
    """Periodic sweep for orphaned managed resources."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    enabled: Annotated[
        bool,
        Field(
            title="Whether to run garbage collection",
            description=(
                "Only needed if the store does not delete dependents itself"
                " or if dependents may have been orphaned while the"
                " controller was not running"
            ),
        ),
    ] = True

    interval: Annotated[
        HumanTimedelta,
        Field(title="Garbage collection interval"),
    ] = timedelta(minutes=5)


class ScalingConfig(BaseModel):
    """Bounds for the generated autoscaling policies."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    min_replicas: Annotated[
        int,
        Field(title="Minimum replicas", ge=1),
    ] = 1

    max_replicas: Annotated[
        int,
        Field(
            title="Maximum replicas",
            description=(
                "Raised to the requested replica count of a microservice if"
                " that is higher"
            ),
            ge=1,
        ),
    ] = 5

    target_cpu_utilization: Annotated[
        int,
        Field(
            title="Target CPU utilization",
            description="Target average CPU utilization in percent",
            ge=1,
            le=100,
        ),
    ] = 50

    @model_validator(mode="after")
    def _validate_bounds(self) -> Self:
        if self.max_replicas < self.min_replicas:
            msg = "scaling.maxReplicas must not be less than minReplicas"
            raise ValueError(msg)
        return self


class Config(BaseSettings):
    """Scalebit controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    backend: Annotated[
        StoreBackend,
        Field(
            title="Resource store",
            description=(
                "``kubernetes`` manages objects in the current Kubernetes"
                " cluster. ``memory`` keeps them in process, for local"
                " experimentation."
            ),
        ),
    ] = StoreBackend.KUBERNETES

    backoff: Annotated[
        BackoffConfig,
        Field(title="Retry backoff"),
    ] = BackoffConfig()

    finalizer: Annotated[
        bool,
        Field(
            title="Whether to use a finalizer",
            description=(
                "If set, the controller adds a finalizer to each microservice"
                " and deletes its managed resources itself before the"
                " microservice is removed, rather than relying only on cascade"
                " deletion"
            ),
        ),
    ] = False

    garbage_collection: Annotated[
        GarbageCollectionConfig,
        Field(title="Garbage collection"),
    ] = GarbageCollectionConfig()

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    metrics: MetricsConfiguration = Field(
        default_factory=metrics_configuration_factory,
        title="Metrics configuration",
        description="Configuration for reporting metrics to Kafka",
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "Scalebit"

    namespace: Annotated[
        str | None,
        Field(
            title="Namespace to manage",
            description=(
                "If not set, microservices in all namespaces are managed"
            ),
        ),
    ] = None

    pod_annotations: Annotated[
        dict[str, str],
        Field(
            title="Pod annotations",
            description=(
                "Annotations added to the pod template of every workload, in"
                " addition to the Prometheus port annotation"
            ),
        ),
    ] = DEFAULT_POD_ANNOTATIONS

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    readiness_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Readiness check interval",
            description=(
                "How soon to reconcile a microservice again while its"
                " workload has fewer ready replicas than requested"
            ),
        ),
    ] = timedelta(seconds=15)

    request_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Store request timeout",
            description="Timeout for each call to the resource store",
        ),
    ] = timedelta(seconds=30)

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Full resync interval",
            description=(
                "How frequently to queue every microservice for"
                " reconciliation even without change notifications"
            ),
        ),
    ] = timedelta(minutes=10)

    scaling: Annotated[
        ScalingConfig,
        Field(title="Autoscaling bounds"),
    ] = ScalingConfig()

    shutdown_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Shutdown timeout",
            description=(
                "How long to wait for in-progress reconciliations to finish"
                " when shutting down"
            ),
        ),
    ] = timedelta(seconds=30)

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, reconciliation failures that indicate a defect and"
                " any uncaught exceptions in the controller will be reported"
                " to Slack via this webhook"
            ),
            validation_alias="SCALEBIT_SLACK_WEBHOOK",
        ),
    ] = None

    workers: Annotated[
        int,
        Field(
            title="Number of workers",
            description="Number of reconciliations that may run at once",
            ge=1,
        ),
    ] = 2

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the controller configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
