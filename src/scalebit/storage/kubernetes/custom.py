"""Storage layer for Kubernetes custom objects."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    V1DeleteOptions,
    V1Preconditions,
)
from structlog.stdlib import BoundLogger

from ...constants import (
    MICROSERVICE_GROUP,
    MICROSERVICE_KIND,
    MICROSERVICE_PLURAL,
    MICROSERVICE_VERSION,
)
from ...exceptions import ObjectNotFoundError
from .call import kubernetes_call
from .watcher import KubernetesWatcher

__all__ = [
    "CustomStorage",
    "MicroserviceStorage",
]


class CustomStorage:
    """Storage layer for Kubernetes custom objects.

    Normally, this class should be subclassed to specialize it for a specific
    custom object type, but it can be used as-is if desired.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    timeout
        Timeout for each API call.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        self._kind = kind
        self._timeout = timeout
        self._logger = logger

    async def create(
        self, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a new custom object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Custom object to create.

        Returns
        -------
        dict
            Custom object as created by the API server.

        Raises
        ------
        ObjectExistsError
            Raised if the object already exists.
        StoreError
            Raised for other exceptions from the Kubernetes API server.
        """
        name = body["metadata"]["name"]
        msg = f"Creating {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        error = "Error creating object"
        async with self._call(error, namespace, name, creating=True):
            return await self._api.create_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                body,
                _request_timeout=self._timeout.total_seconds(),
            )

    async def delete(
        self,
        name: str,
        namespace: str,
        *,
        resource_version: str | None = None,
    ) -> None:
        """Delete a custom object.

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
        msg = f"Deleting {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            async with self._call("Error deleting object", namespace, name):
                await self._api.delete_namespaced_custom_object(
                    self._group,
                    self._version,
                    namespace,
                    self._plural,
                    name,
                    body=body,
                    _request_timeout=self._timeout.total_seconds(),
                )
        except ObjectNotFoundError:
            return

    async def list(self, namespace: str | None = None) -> list[dict[str, Any]]:
        """List custom objects.

        Parameters
        ----------
        namespace
            Namespace in which to list custom objects, or `None` to list all
            namespaces.

        Returns
        -------
        list of dict
            List of custom objects found.

        Raises
        ------
        StoreError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = self._timeout.total_seconds()
        async with self._call("Error listing objects", namespace):
            if namespace:
                objs = await self._api.list_namespaced_custom_object(
                    self._group,
                    self._version,
                    namespace,
                    self._plural,
                    _request_timeout=timeout,
                )
            else:
                objs = await self._api.list_cluster_custom_object(
                    self._group,
                    self._version,
                    self._plural,
                    _request_timeout=timeout,
                )
        return objs["items"]

    async def read(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Read a custom object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.

        Returns
        -------
        dict or None
            Custom object, or `None` if it does not exist.

        Raises
        ------
        StoreError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            async with self._call("Error reading object", namespace, name):
                return await self._api.get_namespaced_custom_object(
                    self._group,
                    self._version,
                    namespace,
                    self._plural,
                    name,
                    _request_timeout=self._timeout.total_seconds(),
                )
        except ObjectNotFoundError:
            return None

    async def replace(
        self, name: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace a custom object, excluding its status.

        The resource version in the metadata of ``body`` guards the write.

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
            return await self._api.replace_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                body,
                _request_timeout=self._timeout.total_seconds(),
            )

    async def replace_status(
        self, name: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace the status of a custom object.

        The resource version in the metadata of ``body`` guards the write.

        Raises
        ------
        ObjectConflictError
            Raised if the resource version did not match.
        ObjectNotFoundError
            Raised if the object does not exist.
        StoreError
            Raised for other exceptions from the Kubernetes API server.
        """
        msg = f"Updating {self._kind} status"
        self._logger.debug(msg, name=name, namespace=namespace)
        async with self._call("Error updating status", namespace, name):
            return await self._api.replace_namespaced_custom_object_status(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                body,
                _request_timeout=self._timeout.total_seconds(),
            )

    def watcher(
        self, namespace: str | None = None
    ) -> KubernetesWatcher[dict[str, Any]]:
        """Create a watcher for custom objects of this kind.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch all namespaces.
        """
        if namespace:
            method = self._api.list_namespaced_custom_object
        else:
            method = self._api.list_cluster_custom_object
        return KubernetesWatcher(
            method=method,
            object_type=dict[str, Any],
            kind=self._kind,
            namespace=namespace,
            group=self._group,
            version=self._version,
            plural=self._plural,
            logger=self._logger,
        )

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


class MicroserviceStorage(CustomStorage):
    """Storage layer for ``Microservice`` objects.

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
        super().__init__(
            api_client=api_client,
            group=MICROSERVICE_GROUP,
            version=MICROSERVICE_VERSION,
            plural=MICROSERVICE_PLURAL,
            kind=MICROSERVICE_KIND,
            timeout=timeout,
            logger=logger,
        )
