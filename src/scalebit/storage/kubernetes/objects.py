"""Generic Kubernetes object storage.

Provides a generic Kubernetes object management class and instantiations of
that class for the built-in Kubernetes object types backing the managed
resources.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    V1DeleteOptions,
    V1Deployment,
    V1Preconditions,
    V1Service,
    V2HorizontalPodAutoscaler,
)
from structlog.stdlib import BoundLogger

from ...exceptions import ObjectNotFoundError
from ...models.domain.kubernetes import KubernetesModel
from .call import kubernetes_call
from .watcher import KubernetesWatcher

__all__ = [
    "DeploymentStorage",
    "HorizontalPodAutoscalerStorage",
    "KubernetesObjectStorage",
    "ServiceStorage",
]


class KubernetesObjectStorage[T: KubernetesModel]:
    """Generic Kubernetes object storage.

    This class provides a wrapper around any namespaced Kubernetes object type
    with logging, per-call timeouts, and exception conversion.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific classes built on
    top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    read_method
        Method to read this type of object.
    replace_method
        Method to replace this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list this type of object in a namespace.
    list_all_method
        Method to list this type of object in all namespaces.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        replace_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        list_all_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._create = create_method
        self._read = read_method
        self._replace = replace_method
        self._delete = delete_method
        self._list = list_method
        self._list_all = list_all_method
        self._type = object_type
        self._kind = kind
        self._timeout = timeout
        self._logger = logger

    async def create(self, namespace: str, body: T) -> T:
        """Create a new Kubernetes object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object.

        Returns
        -------
        typing.Any
            Object as created by the API server.

        Raises
        ------
        ObjectExistsError
            Raised if the object already exists.
        StoreError
            Raised for other exceptions from the Kubernetes API server.
        """
        name = body.metadata.name
        msg = f"Creating {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        error = "Error creating object"
        async with self._call(error, namespace, name, creating=True):
            return await self._create(
                namespace, body, _request_timeout=self._request_timeout
            )

    async def delete(
        self,
        name: str,
        namespace: str,
        *,
        resource_version: str | None = None,
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        resource_version
            If given, only delete the object if this is its current resource
            version.

        Raises
        ------
        ObjectConflictError
            Raised if the resource version did not match.
        StoreError
            Raised for other exceptions from the Kubernetes API server.
        """
        body = None
        if resource_version:
            preconditions = V1Preconditions(resource_version=resource_version)
            body = V1DeleteOptions(preconditions=preconditions)
        self._logger.debug(
            f"Deleting {self._kind}",
            name=name,
            namespace=namespace,
            resource_version=resource_version,
        )
        try:
            async with self._call("Error deleting object", namespace, name):
                await self._delete(
                    name,
                    namespace,
                    body=body,
                    _request_timeout=self._request_timeout,
                )
        except ObjectNotFoundError:
            return

    async def list(self, namespace: str | None = None) -> list[T]:
        """List all objects of the appropriate kind.

        Parameters
        ----------
        namespace
            Namespace to list, or `None` to list all namespaces.

        Returns
        -------
        list
            List of objects found.

        Raises
        ------
        StoreError
            Raised for exceptions from the Kubernetes API server.
        """
        async with self._call("Error listing objects", namespace):
            if namespace:
                objs = await self._list(
                    namespace, _request_timeout=self._request_timeout
                )
            else:
                objs = await self._list_all(
                    _request_timeout=self._request_timeout
                )
        return objs.items

    async def read(self, name: str, namespace: str) -> T | None:
        """Read a Kubernetes object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.

        Returns
        -------
        typing.Any or None
            Kubernetes object, or `None` if it does not exist.

        Raises
        ------
        StoreError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            async with self._call("Error reading object", namespace, name):
                return await self._read(
                    name, namespace, _request_timeout=self._request_timeout
                )
        except ObjectNotFoundError:
            return None

    async def replace(self, name: str, namespace: str, body: T) -> T:
        """Replace a Kubernetes object.

        The resource version in the metadata of ``body`` guards the write.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        body
            New contents of the object.

        Returns
        -------
        typing.Any
            Object as stored by the API server.

        Raises
        ------
        ObjectConflictError
            Raised if the resource version did not match.
        ObjectNotFoundError
            Raised if the object does not exist.
        StoreError
            Raised for other exceptions from the Kubernetes API server.
        """
        msg = f"Replacing {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        async with self._call("Error replacing object", namespace, name):
            return await self._replace(
                name, namespace, body, _request_timeout=self._request_timeout
            )

    def watcher(self, namespace: str | None = None) -> KubernetesWatcher[T]:
        """Create a watcher for objects of this kind.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch all namespaces.
        """
        return KubernetesWatcher(
            method=self._list if namespace else self._list_all,
            object_type=self._type,
            kind=self._kind,
            namespace=namespace,
            logger=self._logger,
        )

    @property
    def _request_timeout(self) -> float:
        return self._timeout.total_seconds()

    def _call(
        self,
        message: str,
        namespace: str | None,
        name: str | None = None,
        *,
        creating: bool = False,
    ) -> AbstractAsyncContextManager[None]:
        return kubernetes_call(
            message,
            self._timeout,
            kind=self._kind,
            namespace=namespace,
            name=name,
            creating=creating,
        )


class DeploymentStorage(KubernetesObjectStorage[V1Deployment]):
    """Storage layer for ``Deployment`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_deployment,
            read_method=api.read_namespaced_deployment,
            replace_method=api.replace_namespaced_deployment,
            delete_method=api.delete_namespaced_deployment,
            list_method=api.list_namespaced_deployment,
            list_all_method=api.list_deployment_for_all_namespaces,
            object_type=V1Deployment,
            kind="Deployment",
            timeout=timeout,
            logger=logger,
        )


class HorizontalPodAutoscalerStorage(
    KubernetesObjectStorage[V2HorizontalPodAutoscaler]
):
    """Storage layer for ``autoscaling/v2`` ``HorizontalPodAutoscaler``.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        api = client.AutoscalingV2Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_horizontal_pod_autoscaler,
            read_method=api.read_namespaced_horizontal_pod_autoscaler,
            replace_method=api.replace_namespaced_horizontal_pod_autoscaler,
            delete_method=api.delete_namespaced_horizontal_pod_autoscaler,
            list_method=api.list_namespaced_horizontal_pod_autoscaler,
            list_all_method=(
                api.list_horizontal_pod_autoscaler_for_all_namespaces
            ),
            object_type=V2HorizontalPodAutoscaler,
            kind="HorizontalPodAutoscaler",
            timeout=timeout,
            logger=logger,
        )


class ServiceStorage(KubernetesObjectStorage[V1Service]):
    """Storage layer for ``Service`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_service,
            read_method=api.read_namespaced_service,
            replace_method=api.replace_namespaced_service,
            delete_method=api.delete_namespaced_service,
            list_method=api.list_namespaced_service,
            list_all_method=api.list_service_for_all_namespaces,
            object_type=V1Service,
            kind="Service",
            timeout=timeout,
            logger=logger,
        )
