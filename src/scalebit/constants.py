"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CONFIGURATION_PATH",
    "CONFIG_FILE_ENV_VAR",
    "DEFAULT_POD_ANNOTATIONS",
    "FINALIZER",
    "MANAGED_BY_LABEL",
    "MANAGED_BY_VALUE",
    "METRICS_INTERVAL",
    "MICROSERVICE_API_VERSION",
    "MICROSERVICE_GROUP",
    "MICROSERVICE_KIND",
    "MICROSERVICE_PLURAL",
    "MICROSERVICE_VERSION",
    "ROOT_LOGGER",
    "SCALING_POLICY_SUFFIX",
    "SELECTOR_LABEL",
    "WATCH_RETRY_CAP",
    "WATCH_RETRY_INITIAL",
]

CONFIGURATION_PATH = Path("/etc/scalebit/config.yaml")
"""Default path to controller configuration."""

CONFIG_FILE_ENV_VAR = "SCALEBIT_CONFIG_FILE"
"""Environment variable that overrides the configuration path."""

DEFAULT_POD_ANNOTATIONS = {
    "linkerd.io/inject": "enabled",
    "prometheus.io/scrape": "true",
}
"""Annotations added to the pod template of every workload.

The ``prometheus.io/port`` annotation is always added as well, with the value
taken from the port of the microservice.
"""

FINALIZER = "scalebit.moodykhalif23.github.com/cleanup"
"""Finalizer used when the store has no native cascade deletion."""

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
"""Label marking objects created by this controller."""

MANAGED_BY_VALUE = "scalebit"
"""Value of `MANAGED_BY_LABEL` on objects created by this controller."""

METRICS_INTERVAL = timedelta(minutes=1)
"""How frequently to publish the queue depth gauge."""

MICROSERVICE_GROUP = "scalebit.moodykhalif23.github.com"
"""API group of the ``Microservice`` custom resource."""

MICROSERVICE_VERSION = "v1alpha1"
"""API version of the ``Microservice`` custom resource."""

MICROSERVICE_API_VERSION = f"{MICROSERVICE_GROUP}/{MICROSERVICE_VERSION}"
"""Full ``apiVersion`` of the ``Microservice`` custom resource."""

MICROSERVICE_KIND = "Microservice"
"""Kind of the ``Microservice`` custom resource."""

MICROSERVICE_PLURAL = "microservices"
"""Plural under which ``Microservice`` objects are served."""

ROOT_LOGGER = "scalebit"
"""Name of the root logger for the controller."""

SCALING_POLICY_SUFFIX = "-hpa"
"""Suffix added to the microservice name to form the scaling policy name."""

SELECTOR_LABEL = "app"
"""Label used to select the pods of a microservice."""

WATCH_RETRY_INITIAL = timedelta(seconds=1)
"""Initial delay before reconnecting a failed watch."""

WATCH_RETRY_CAP = timedelta(seconds=30)
"""Maximum delay before reconnecting a failed watch."""
