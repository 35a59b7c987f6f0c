"""Timeouts and exception conversion for Kubernetes API calls."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from aiohttp import ClientError
from kubernetes_asyncio.client import ApiException

from ...exceptions import (
    KubernetesError,
    ObjectConflictError,
    ObjectExistsError,
    ObjectNotFoundError,
    StoreError,
    TransientStoreError,
)

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
"""HTTP statuses that indicate a temporary problem with the API server."""

__all__ = ["TRANSIENT_STATUSES", "kubernetes_call"]


@asynccontextmanager
async def kubernetes_call(
    message: str,
    timeout: timedelta,
    *,
    kind: str,
    namespace: str | None = None,
    name: str | None = None,
    creating: bool = False,
) -> AsyncIterator[None]:
    """Bound a Kubernetes API call by a timeout and convert its exceptions.

    Parameters
    ----------
    message
        Brief explanation of what is being attempted, used in exceptions.
    timeout
        How long the call may take.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    creating
        Whether the call creates an object, in which case a 409 status means
        the object already exists rather than a resource version conflict.

    Raises
    ------
    KubernetesError
        Raised for API errors with no more specific meaning.
    ObjectConflictError
        Raised for a 409 status other than on creation.
    ObjectExistsError
        Raised for a 409 status on creation.
    ObjectNotFoundError
        Raised for a 404 status.
    TransientStoreError
        Raised on timeout, connection failure, or a server-side status that
        indicates the request may succeed if retried.
    """
    location = {"kind": kind, "namespace": namespace, "name": name}
    try:
        async with asyncio.timeout(timeout.total_seconds()):
            yield
    except ApiException as e:
        error: type[StoreError]
        match e.status:
            case 404:
                error = ObjectNotFoundError
            case 409 if creating:
                error = ObjectExistsError
            case 409:
                error = ObjectConflictError
            case status if status in TRANSIENT_STATUSES:
                error = TransientStoreError
            case _:
                error = KubernetesError
        raise error.from_exception(message, e, **location) from e
    except TimeoutError as e:
        seconds = timeout.total_seconds()
        msg = f"{message}: timed out after {seconds}s"
        raise TransientStoreError(msg, **location) from e
    except ClientError as e:
        msg = f"{message}: {type(e).__name__}: {e!s}"
        raise TransientStoreError(msg, **location) from e
