"""Watch a Kubernetes namespace or cluster for events."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from aiohttp import ClientError
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError, TransientStoreError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(
        cls, event: dict[str, Any], object_type: type[T]
    ) -> Self | None:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Returns
        -------
        WatchEvent or None
            Parsed event, or `None` for event types other than additions,
            modifications, and deletions (bookmarks, for instance).

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        try:
            action = WatchEventType(event["type"])
        except ValueError:
            return None
        if object_type.__name__ == "dict":
            return cls(action=action, object=event["raw_object"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher[T]:
    """Watch Kubernetes for events indefinitely.

    This wrapper around the watch API of the Kubernetes client restarts the
    watch whenever the server ends it, resuming from the last resource
    version seen so that no events are lost. If that resource version is too
    old to still be known to Kubernetes, the watch restarts from the current
    state instead.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. This must be provided by the caller
        because ``kubernetes_asyncio`` cannot reliably discover it. For custom
        objects, this should be a `dict` type.
    kind
        Kubernetes kind of object being watched, for error reporting.
    namespace
        Namespace to watch, or `None` to watch all namespaces. The ``method``
        must match (a namespaced list method or a cluster-wide one).
    group
        Group of custom object.
    version
        Version of custom object.
    plural
        Plural of custom object.
    timeout
        Server-side timeout of each watch request. The watch is restarted
        after each timeout.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        namespace: str | None = None,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        timeout: timedelta = timedelta(minutes=5),
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._logger = logger
        self._stopped = False

        timeout_seconds = int(timeout.total_seconds())
        if timeout_seconds <= 0:
            raise ValueError("Watch timeout specified but <= 0")
        args = {
            "group": group,
            "version": version,
            "plural": plural,
            "namespace": namespace,
            "timeout_seconds": timeout_seconds,
            "_request_timeout": timeout_seconds + 10,
        }
        self._args = {k: v for k, v in args.items() if v is not None}
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        Yields
        ------
        WatchEvent
            Next event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TransientStoreError
            Raised if the connection to the API server failed.
        """
        args = self._args.copy()
        while not self._stopped:
            try:
                async with self._watch.stream(self._method, **args) as stream:
                    async for raw_event in stream:
                        event = WatchEvent.from_event(raw_event, self._type)
                        if not event:
                            continue
                        if version := self._resource_version(event.object):
                            args["resource_version"] = version
                        yield event
            except ApiException as e:
                if e.status == 410:
                    version = args.pop("resource_version", None)
                    msg = f"Resource version {version} expired, retrying watch"
                    self._logger.info(msg, kind=self._kind)
                    if not version:
                        await asyncio.sleep(1)
                    continue
                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                ) from e
            except (ClientError, TimeoutError) as e:
                msg = f"Error watching objects: {type(e).__name__}: {e!s}"
                raise TransientStoreError(
                    msg, kind=self._kind, namespace=self._namespace
                ) from e

    def _resource_version(self, obj: Any) -> str | None:
        if isinstance(obj, dict):
            return obj.get("metadata", {}).get("resourceVersion")
        metadata = getattr(obj, "metadata", None)
        return metadata.resource_version if metadata else None
