"""Domain models for talking to the Docker API."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Self

from ...constants import (
    DOCKER_HUB_ALIASES,
    DOCKER_HUB_API_HOST,
    DOCKER_HUB_REGISTRY,
)

__all__ = [
    "DockerCredentials",
    "DockerReference",
    "Platform",
    "RegistryResource",
    "repository_key",
]

# Regexes used to validate the components of a Docker reference.
_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REPOSITORY_REGEX = re.compile(rf"{_COMPONENT}(?:/{_COMPONENT})*$")
_TAG_REGEX = re.compile(r"[\w][\w.-]{0,127}$")
_DIGEST_REGEX = re.compile(
    r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z0-9]+)*:\w+$"
)


def repository_key(image: str) -> str:
    """Strip any tag or digest from an image reference.

    The result identifies the repository alone, so references that differ
    only by tag share the same key. A colon before the last ``/`` is a
    registry port, not a tag, and is kept.

    Parameters
    ----------
    image
        Image reference as it appears in a pod spec.

    Returns
    -------
    str
        Image reference without tag or digest.
    """
    image = image.split("@", 1)[0]
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon]
    return image


@dataclass(frozen=True)
class Platform:
    """Platform used to select an image from a multi-platform manifest."""

    architecture: str = "amd64"
    """CPU architecture, such as ``amd64`` or ``arm64``."""

    os: str = "linux"
    """Operating system, such as ``linux``."""

    def __str__(self) -> str:
        return f"{self.os}/{self.architecture}"


@dataclass
class DockerReference:
    """Parses a Docker reference.

    References without a registry host refer to Docker Hub, single-component
    Docker Hub repositories live under ``library/``, and references with
    neither a tag nor a digest refer to the ``latest`` tag.
    """

    registry: str
    """Registry (Docker API server) hosting the image."""

    repository: str
    """Repository of images (for example, ``library/nginx``)."""

    tag: str | None
    """Tag, if present."""

    digest: str | None
    """Digest, if present."""

    @classmethod
    def from_str(cls, reference: str) -> Self:
        """Parse a Docker reference string into its components.

        Parameters
        ----------
        reference
            Reference string.

        Returns
        -------
        DockerReference
            Resulting reference.

        Raises
        ------
        ValueError
            The reference could not be parsed. (Uses `ValueError` so that this
            can be used as a Pydantic validator.)
        """
        name, _, digest = reference.partition("@")
        tag: str | None = None
        slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > slash:
            name, tag = name[:colon], name[colon + 1 :]

        first, sep, rest = name.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = rest
        else:
            registry = DOCKER_HUB_REGISTRY
            repository = name
        if registry in DOCKER_HUB_ALIASES:
            registry = DOCKER_HUB_REGISTRY
            if "/" not in repository:
                repository = f"library/{repository}"

        if not _REPOSITORY_REGEX.match(repository):
            raise ValueError(f'Invalid Docker reference "{reference}"')
        if tag is not None and not _TAG_REGEX.match(tag):
            raise ValueError(f'Invalid tag in Docker reference "{reference}"')
        if digest and not _DIGEST_REGEX.match(digest):
            msg = f'Invalid digest in Docker reference "{reference}"'
            raise ValueError(msg)
        if tag is None and not digest:
            tag = "latest"
        return cls(
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest or None,
        )

    @property
    def api_host(self) -> str:
        """Host serving the Docker Registry API for this registry."""
        if self.registry == DOCKER_HUB_REGISTRY:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def manifest_reference(self) -> str:
        """Tag or digest to use when requesting the image manifest."""
        if self.digest:
            return self.digest
        return self.tag or "latest"

    def __str__(self) -> str:
        result = f"{self.registry}/{self.repository}"
        if self.tag is not None:
            result += f":{self.tag}"
        if self.digest is not None:
            result += f"@{self.digest}"
        return result


@dataclass(frozen=True)
class RegistryResource:
    """Identifies what a registry request needs credentials for.

    Passed to a keychain to select the credentials for a request.
    """

    registry: str
    """Registry host, as it appears in the image reference."""

    repository: str
    """Image reference without tag or digest, as it appears in the pod."""

    def __str__(self) -> str:
        return self.repository


@dataclass
class DockerCredentials:
    """Holds the credentials for one Docker API server."""

    username: str
    """Authentication username."""

    password: str
    """Authentication password."""

    @property
    def authorization(self) -> str:
        """Authentication string for ``Authorization`` header."""
        return f"Basic {self.credentials}"

    @property
    def credentials(self) -> str:
        """Credentials in encoded form suitable for ``Authorization``."""
        auth_data = f"{self.username}:{self.password}".encode()
        return base64.b64encode(auth_data).decode()

    @classmethod
    def from_config(cls, config: object) -> Self | None:
        """Create from a Docker config entry (such as a pull secret).

        The ``username`` and ``password`` fields are used if present.
        Otherwise, the ``auth`` field is decoded instead.

        Parameters
        ----------
        config
            The entry for that hostname in the configuration.

        Returns
        -------
        DockerCredentials or None
            The resulting credentials, or `None` if the entry contains no
            credentials.

        Raises
        ------
        ValueError
            Raised if the entry is malformed.
        """
        if not isinstance(config, dict):
            raise ValueError("Docker config entry is not an object")
        username = config.get("username")
        password = config.get("password")
        if username is not None or password is not None:
            if not isinstance(username, str) or not isinstance(password, str):
                raise ValueError("Docker config username or password invalid")
            return cls(username=username, password=password)
        auth = config.get("auth")
        if not auth:
            return None
        if not isinstance(auth, str):
            raise ValueError("Docker config auth field is not a string")
        basic_auth = base64.b64decode(auth.encode()).decode()
        username, sep, password = basic_auth.partition(":")
        if not sep:
            raise ValueError("Docker config auth field has no password")
        return cls(username=username, password=password)
