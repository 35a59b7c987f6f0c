"""Exceptions for the Scalebit controller."""

from __future__ import annotations

from typing import Self, override

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)

__all__ = [
    "InvariantViolationError",
    "KubernetesError",
    "ObjectConflictError",
    "ObjectExistsError",
    "ObjectNotFoundError",
    "OwnershipConflictError",
    "StoreError",
    "TransientStoreError",
]


class StoreError(SlackException):
    """A call to the resource store failed.

    This is the base class for all store failures. Subclasses distinguish the
    failures the reconciler handles specially from generic ones.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        StoreError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                obj = f"{kind}{self.namespace}/{self.name}"
            else:
                obj = f"{kind}{self.name}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        elif self.kind:
            if self.namespace:
                obj = f"{self.kind} in namespace {self.namespace}"
            else:
                obj = self.kind
            block = SlackTextBlock(heading="Object", text=obj)
            message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class KubernetesError(StoreError):
    """An API call to Kubernetes failed for a reason with no special meaning
    to the reconciler."""


class ObjectConflictError(StoreError):
    """A conditional write failed because the object changed.

    The resource version given with the write did not match the stored one.
    This is always resolved by rereading the object on a later pass, never by
    overwriting it.
    """


class ObjectExistsError(StoreError):
    """An object being created already exists."""


class ObjectNotFoundError(StoreError):
    """An object being updated does not exist."""


class TransientStoreError(StoreError):
    """The store could not be reached or did not answer in time."""


class InvariantViolationError(SlackException):
    """A microservice has an invalid spec.

    Such objects should have been rejected at admission, so this indicates a
    defect elsewhere. Reconciliation keeps being retried but cannot succeed
    until the object is corrected.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of the microservice.
    name
        Name of the microservice.
    error
        Detailed error message, possibly multi-line.
    """

    @classmethod
    def from_exception(
        cls, exc: ValidationError, *, namespace: str, name: str
    ) -> Self:
        """Create an exception from a Pydantic parse failure.

        Parameters
        ----------
        exc
            Pydantic exception.
        namespace
            Namespace of the microservice.
        name
            Name of the microservice.

        Returns
        -------
        InvariantViolationError
            Constructed exception.
        """
        error = f"{type(exc).__name__}: {exc!s}"
        msg = f"Microservice {namespace}/{name} has an invalid spec"
        return cls(msg, namespace=namespace, name=name, error=error)

    def __init__(
        self, message: str, *, namespace: str, name: str, error: str
    ) -> None:
        super().__init__(message)
        self.namespace = namespace
        self.name = name
        self.error = error

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        block = SlackCodeBlock(heading="Error", code=self.error)
        message.blocks.append(block)
        return message


class OwnershipConflictError(SlackException):
    """A managed object exists but is not controlled by its microservice.

    The object is never adopted or overwritten. Reconciliation of the
    microservice fails until the conflicting object is removed.

    Parameters
    ----------
    kind
        Kind of the conflicting object.
    namespace
        Namespace of the conflicting object.
    name
        Name of the conflicting object.
    owner
        Description of the current controller of the object, or `None` if it
        has none.
    """

    def __init__(
        self, *, kind: str, namespace: str, name: str, owner: str | None
    ) -> None:
        if owner:
            msg = f"{kind} {namespace}/{name} is controlled by {owner}"
        else:
            msg = f"{kind} {namespace}/{name} exists without a controller"
        super().__init__(msg)
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.owner = owner

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        obj = f"{self.kind} {self.namespace}/{self.name}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message
