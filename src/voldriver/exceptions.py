"""Exceptions for the volume provisioner."""

from pathlib import Path
from typing import Self, override

from httpx import HTTPError, HTTPStatusError, RequestError
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
    "ClaimNotFoundError",
    "InvalidObjectError",
    "InvalidRequestError",
    "KubernetesError",
    "PluginDisabledError",
    "PluginError",
    "PluginNotFoundError",
    "PluginTransportError",
    "UnknownStorageClassError",
    "VolumeNotFoundError",
]


class InvalidObjectError(SlackException):
    """An event from a Kubernetes watch carried an unexpected object.

    Parameters
    ----------
    obj
        The object that could not be decoded.
    expected
        Name of the kind of object that was expected.
    """

    def __init__(self, obj: object, expected: str) -> None:
        msg = f"Unexpected type {type(obj).__name__} (wanted {expected})"
        super().__init__(msg)


class InvalidRequestError(SlackException):
    """A plugin request was rejected before it was sent."""


class KubernetesError(SlackException):
    """A Kubernetes API call made by the provisioner failed.

    Parameters
    ----------
    message
        What the provisioner was trying to do.
    kind
        Kind of the object involved.
    namespace
        Namespace of the object, unless it is cluster-wide.
    name
        Name of the object.
    status
        HTTP status returned by the API server.
    body
        Error text returned by the API server.
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
        """Wrap an `~kubernetes_asyncio.client.ApiException`.

        The other parameters are as for the constructor.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
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

    def __str__(self) -> str:
        summary = self._summary()
        return f"{summary}: {self.body}" if self.body else summary

    @property
    def object_description(self) -> str | None:
        """Kind, namespace, and name of the object, if a name is known."""
        if not self.name:
            return None
        path = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind} {path}" if self.kind else path

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if obj := self.object_description:
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            block = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(block)
        return message

    def _summary(self) -> str:
        details = []
        if obj := self.object_description:
            details.append(obj)
        if self.status:
            details.append(f"status {self.status}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"


class UnknownStorageClassError(SlackException):
    """The storage class named by a claim does not exist."""


class ClaimNotFoundError(SlackException):
    """A claim referenced by another claim was not found.

    Parameters
    ----------
    name
        Name of the referenced claim.
    namespace
        Namespace in which it was expected.
    waited
        Seconds spent waiting for it to appear.
    """

    def __init__(self, name: str, namespace: str, waited: int) -> None:
        msg = (
            f"Claim {namespace}/{name} not found in phase Bound after"
            f" waiting {waited}s"
        )
        super().__init__(msg)
        self.name = name
        self.namespace = namespace
        self.waited = waited


class PluginError(SlackException):
    """The volume plugin reported an error.

    The string value of the exception is exactly the error text returned by
    the plugin.

    Parameters
    ----------
    message
        Error text from the plugin.
    path
        Protocol path of the failed call, if known.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        if self.path:
            field = SlackTextField(heading="Call", text=self.path)
            message.fields.append(field)
        return message


class VolumeNotFoundError(PluginError):
    """The volume plugin reported that a volume does not exist."""


class PluginTransportError(SlackException):
    """Talking to the volume plugin or Docker engine failed.

    Parameters
    ----------
    message
        Summary of the failure.
    path
        Path of the request, if known.
    status
        HTTP status of the response, if any.
    body
        Body of the response, if any.
    """

    @classmethod
    def from_exception(cls, exc: HTTPError | ValidationError) -> Self:
        """Create an exception from an httpx or Pydantic exception.

        Parameters
        ----------
        exc
            Underlying exception.

        Returns
        -------
        PluginTransportError
            Newly-constructed exception.
        """
        if isinstance(exc, HTTPStatusError):
            status = exc.response.status_code
            method = exc.request.method
            message = f"Status {status} from {method} {exc.request.url.path}"
            return cls(
                message,
                path=exc.request.url.path,
                status=status,
                body=exc.response.text,
            )
        message = f"{type(exc).__name__}: {exc!s}"
        if isinstance(exc, RequestError):
            return cls(message, path=exc.request.url.path)
        return cls(message)

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.status = status
        self.body = body

    def __str__(self) -> str:
        result = self.message
        if self.body:
            result += f"\nBody:\n{self.body}\n"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        if self.path:
            field = SlackTextField(heading="Path", text=self.path)
            message.fields.append(field)
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.body:
            block = SlackCodeBlock(heading="Response", code=self.body)
            message.blocks.append(block)
        return message


class PluginNotFoundError(SlackException):
    """No managed Docker plugin has the requested name."""


class PluginDisabledError(SlackException):
    """The requested Docker plugin exists but is disabled.

    Parameters
    ----------
    name
        Name of the plugin.
    socket_path
        Socket the plugin would be listening on if it were enabled.
    """

    def __init__(self, name: str, socket_path: Path) -> None:
        msg = f"Found Docker plugin {name}, but it is disabled"
        super().__init__(msg)
        self.name = name
        self.socket_path = socket_path
