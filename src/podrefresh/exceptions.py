"""Exceptions for podrefresh."""

from __future__ import annotations

from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
    SlackWebException,
)

__all__ = [
    "ClusterConnectionError",
    "DockerRegistryError",
    "KubernetesError",
    "MalformedDockerConfigError",
    "NotDockerConfigSecretError",
    "PodListError",
    "RegistryFetchError",
    "SecretFetchError",
]


class ClusterConnectionError(SlackException):
    """Unable to obtain a Kubernetes client configuration."""


class DockerRegistryError(SlackWebException):
    """An API call to a Docker Registry failed."""


class RegistryFetchError(SlackException):
    """Unable to determine the latest digest of an image.

    Parameters
    ----------
    message
        Summary of error.
    image
        Image reference whose digest was requested.
    """

    def __init__(self, message: str, image: str) -> None:
        super().__init__(f"{message} for {image}")
        self.image = image

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.blocks.append(SlackTextBlock(heading="Image", text=self.image))
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: Exception,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a failed Kubernetes API call.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception, or the transport error (such as a
            timeout) raised by the client.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        if isinstance(exc, ApiException):
            status = exc.status
            body = exc.body if exc.body else exc.reason
        else:
            status = None
            body = type(exc).__name__
            if str(exc):
                body += f": {exc!s}"
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=status,
            body=body,
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


class PodListError(KubernetesError):
    """Listing pods across the cluster failed.

    This is fatal to a refresh run.
    """


class SecretFetchError(KubernetesError):
    """A pull secret could not be retrieved.

    Parameters
    ----------
    name
        Name of secret.
    namespace
        Namespace of secret.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    def __init__(
        self,
        name: str,
        namespace: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        if status is None and body is None:
            message = "Pull secret does not exist"
        else:
            message = "Error reading pull secret"
        super().__init__(
            message,
            kind="Secret",
            namespace=namespace,
            name=name,
            status=status,
            body=body,
        )


class NotDockerConfigSecretError(SlackException):
    """A pull secret has no ``.dockerconfigjson`` key."""

    def __init__(self, name: str, namespace: str) -> None:
        msg = f"Secret {namespace}/{name} has no .dockerconfigjson key"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace


class MalformedDockerConfigError(SlackException):
    """The Docker configuration in a pull secret could not be parsed."""

    def __init__(self, name: str, namespace: str, error: str) -> None:
        msg = f"Cannot parse Docker config in secret {namespace}/{name}"
        super().__init__(f"{msg}: {error}")
        self.name = name
        self.namespace = namespace
