"""Client for the Docker v2 API."""

from __future__ import annotations

import json
from typing import Protocol, Self
from urllib.parse import urlparse

from httpx import AsyncClient, HTTPError, Response
from structlog.stdlib import BoundLogger

from ..constants import (
    DOCKER_HUB_ALIASES,
    MANIFEST_INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
)
from ..exceptions import DockerRegistryError
from ..models.domain.docker import (
    DockerCredentials,
    DockerReference,
    Platform,
    RegistryResource,
)

__all__ = [
    "DockerCredentialStore",
    "DockerRegistryClient",
    "Keychain",
]


class Keychain(Protocol):
    """Source of credentials for Docker registry requests."""

    async def resolve(
        self, resource: RegistryResource
    ) -> DockerCredentials | None:
        """Return the credentials to use for a resource.

        Parameters
        ----------
        resource
            Registry and repository being accessed.

        Returns
        -------
        DockerCredentials or None
            Credentials to use, or `None` to access the registry anonymously.
        """


class DockerCredentialStore:
    """Read the ``.dockerconfigjson`` syntax used by Kubernetes."""

    @classmethod
    def from_dockerconfigjson(cls, data: str | bytes) -> Self:
        """Load credentials for Docker API hosts from a Docker config.

        Parameters
        ----------
        data
            Contents of a ``.dockerconfigjson`` file or pull secret key.

        Returns
        -------
        DockerCredentialStore
            The resulting credential store.

        Raises
        ------
        ValueError
            Raised if the data is not a valid Docker config.
        """
        credentials_data = json.loads(data)
        if not isinstance(credentials_data, dict):
            raise ValueError("Docker config is not a JSON object")
        auths = credentials_data.get("auths")
        if not isinstance(auths, dict):
            raise ValueError("Docker config has no auths object")
        credentials = {}
        for host, config in auths.items():
            entry = DockerCredentials.from_config(config)
            if entry:
                credentials[host] = entry
        return cls(credentials)

    def __init__(self, credentials: dict[str, DockerCredentials]) -> None:
        self._credentials = credentials

    def __len__(self) -> int:
        return len(self._credentials)

    def get(self, host: str) -> DockerCredentials | None:
        """Get credentials for a given registry host.

        An exact match on the host wins. Otherwise, keys written as URLs
        (``https://host/v1/``) match their host, a host with a port matches
        credentials for the host without it, and the Docker Hub host names
        match each other.

        Parameters
        ----------
        host
            Host to which to authenticate.

        Returns
        -------
        DockerCredentials or None
            The corresponding credentials or `None` if there are no
            credentials in the store for that host.
        """
        credentials = self._credentials.get(host)
        if credentials:
            return credentials
        candidates = {host, host.split(":", 1)[0]}
        if host in DOCKER_HUB_ALIASES:
            candidates.update(DOCKER_HUB_ALIASES)
        for key, credentials in self._credentials.items():
            if self._normalize_host(key) in candidates:
                return credentials
        return None

    @staticmethod
    def _normalize_host(key: str) -> str:
        if "://" in key:
            return urlparse(key).netloc
        return key.split("/", 1)[0]


class DockerRegistryClient:
    """Client to query the Docker API for image digests.

    Credentials are chosen per request by a keychain, so one client can talk
    to any number of registries on behalf of any number of pull secrets.

    Parameters
    ----------
    http_client
        Client to use to make requests.
    logger
        Logger for log messages.
    """

    def __init__(self, http_client: AsyncClient, logger: BoundLogger) -> None:
        self._client = http_client
        self._logger = logger

    async def get_image_digest(
        self,
        reference: DockerReference,
        *,
        resource: RegistryResource,
        keychain: Keychain,
        platform: Platform,
    ) -> str:
        """Get the digest of the manifest a reference points to.

        If the reference points to a multi-platform manifest list, the list
        must contain an image for the requested platform. The digest returned
        is still that of the manifest list, since that is what Kubernetes
        reports as the image ID of a running container.

        Parameters
        ----------
        reference
            Image to look up.
        resource
            Resource to pass to the keychain to choose credentials.
        keychain
            Source of credentials for the request.
        platform
            Platform that must be available.

        Returns
        -------
        str
            The digest, such as ``sha256:abcdef``.

        Raises
        ------
        DockerRegistryError
            Unable to retrieve the digest from the Docker Registry.
        """
        credentials = await keychain.resolve(resource)
        host = reference.api_host
        url = (
            f"https://{host}/v2/{reference.repository}"
            f"/manifests/{reference.manifest_reference}"
        )
        headers = self._build_manifest_headers()
        try:
            r = await self._client.head(url, headers=headers)
            if r.status_code == 401:
                auth = await self._authenticate(host, r, credentials)
                headers["Authorization"] = auth
                r = await self._client.head(url, headers=headers)
            r.raise_for_status()
            digest = r.headers["Docker-Content-Digest"]
            media_type = r.headers.get("Content-Type", "").split(";")[0]
        except DockerRegistryError:
            raise
        except HTTPError as e:
            raise DockerRegistryError.from_exception(e) from e
        except Exception as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot get image digest from Docker registry: {error}"
            raise DockerRegistryError(msg, method="HEAD", url=url) from e

        if media_type.strip() in MANIFEST_INDEX_MEDIA_TYPES:
            await self._check_platform(url, headers, platform)
        self._logger.debug(
            "Retrieved image digest",
            registry=reference.registry,
            repository=reference.repository,
            reference=reference.manifest_reference,
            digest=digest,
        )
        return digest

    async def _check_platform(
        self, url: str, headers: dict[str, str], platform: Platform
    ) -> None:
        """Check that a manifest list contains an image for a platform.

        Parameters
        ----------
        url
            URL of the manifest list.
        headers
            Headers to use for the request, including any authorization.
        platform
            Required platform.

        Raises
        ------
        DockerRegistryError
            Raised if the manifest list could not be retrieved or has no
            image for that platform.
        """
        try:
            r = await self._client.get(url, headers=headers)
            r.raise_for_status()
            manifests = r.json()["manifests"]
            found = any(
                m.get("platform", {}).get("architecture")
                == platform.architecture
                and m.get("platform", {}).get("os") == platform.os
                for m in manifests
            )
        except HTTPError as e:
            raise DockerRegistryError.from_exception(e) from e
        except Exception as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot parse manifest list from Docker registry: {error}"
            raise DockerRegistryError(msg, method="GET", url=url) from e
        if not found:
            msg = f"No image for platform {platform} in manifest list"
            raise DockerRegistryError(msg, method="GET", url=url, status=404)

    async def _authenticate(
        self,
        host: str,
        response: Response,
        credentials: DockerCredentials | None,
    ) -> str:
        """Authenticate after getting an auth challenge.

        Parameters
        ----------
        host
            The host to which we're making the request.
        response
            The response from the server that includes an auth challenge.
        credentials
            Credentials to use, or `None` to request anonymous access.

        Returns
        -------
        str
            Value of the ``Authorization`` header to use when retrying the
            request.

        Raises
        ------
        DockerRegistryError
            Some failure in talking to the Docker registry API server.
        """
        challenge = response.headers.get("WWW-Authenticate")
        if not challenge:
            msg = f"Docker API 401 response from {host} contains no challenge"
            raise DockerRegistryError(msg)
        challenge_type, _, params = challenge.partition(" ")
        challenge_type = challenge_type.lower()

        if challenge_type == "basic":
            if not credentials:
                msg = f"No Docker API credentials available for {host}"
                raise DockerRegistryError(msg)
            self._logger.debug(
                "Authenticating to Docker API with basic auth",
                registry=host,
                username=credentials.username,
            )
            return credentials.authorization
        elif challenge_type == "bearer":
            # Bearer is used by Docker's official registry, and by most
            # registries that allow anonymous pulls.
            token = await self._get_bearer_token(host, credentials, params)
            return f"Bearer {token}"
        else:
            msg = f'Unknown Docker authentication challenge "{challenge_type}"'
            raise DockerRegistryError(msg)

    def _build_manifest_headers(self) -> dict[str, str]:
        """Construct the headers used to inspect a manifest.

        Multi-platform manifest lists must be accepted, or registries will
        return the manifest of a single platform (or an error) instead.
        """
        accept = [*MANIFEST_MEDIA_TYPES, "application/json;q=0.5"]
        return {"Accept": ", ".join(accept)}

    async def _get_bearer_token(
        self,
        host: str,
        credentials: DockerCredentials | None,
        challenge_params: str,
    ) -> str:
        """Get a bearer token for subsequent API calls.

        Parameters
        ----------
        host
            The host to which we're authenticating.
        credentials
            Authentication credentials, or `None` for an anonymous token.
        challenge_params
            The parameters it sent in the ``WWW-Authenticate`` header.

        Returns
        -------
        str
            The bearer token to use for subsequent calls to that host.

        Raises
        ------
        DockerRegistryError
            Some failure in talking to the Docker registry API server.
        """
        # We need to reflect the challenge parameters back as query
        # parameters when obtaining our bearer token.
        self._logger.debug(
            "Parsing Docker API bearer challenge", params=challenge_params
        )
        params = {}
        for param in challenge_params.split(","):
            key, sep, value = param.strip().partition("=")
            if sep:
                params[key] = value.replace('"', "")
        url = params.pop("realm", None)
        if not url:
            msg = f"Docker API bearer challenge from {host} has no realm"
            raise DockerRegistryError(msg)

        self._logger.debug(
            "Obtaining Docker API bearer token",
            registry=host,
            url=url,
            username=credentials.username if credentials else None,
        )
        auth = None
        if credentials:
            auth = (credentials.username, credentials.password)
        try:
            r = await self._client.get(url, auth=auth, params=params)
            r.raise_for_status()
            data = r.json()
            return data.get("token") or data["access_token"]
        except HTTPError as e:
            raise DockerRegistryError.from_exception(e) from e
        except Exception as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot parse Docker registry login response: {error}"
            raise DockerRegistryError(msg, method="GET", url=url) from e
