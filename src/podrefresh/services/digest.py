"""Resolve the latest registry digests of images used by pods."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..cache import SingleFlightCache
from ..exceptions import RegistryFetchError
from ..models.domain.docker import (
    DockerCredentials,
    DockerReference,
    Platform,
    RegistryResource,
    repository_key,
)
from ..storage.docker import DockerRegistryClient
from .credentials import CredentialDirectory

__all__ = ["DigestResolver", "PullSecretAssociation"]


@dataclass(frozen=True, slots=True)
class PullSecretAssociation:
    """Pull secrets to try when authenticating for a repository."""

    namespace: str
    """Namespace of the pod that referenced the secrets."""

    secrets: tuple[str, ...]
    """Names of the pull secrets, in the order the pod lists them."""


class DigestResolver:
    """Find the latest digest of images in their registries.

    Each image is looked up in its registry at most once per run. Pull
    secrets are associated with an image repository when a caller asks for
    an image's digest, and are only read if the registry asks for
    credentials for that repository. This class is also the keychain the
    registry client uses to pick those credentials.

    Parameters
    ----------
    docker_client
        Client for Docker registries.
    credentials
        Directory of credentials from pull secrets.
    platform
        Platform that images must be available for.
    digest_ttl
        How long to cache digests. `None` caches them for the whole run.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        docker_client: DockerRegistryClient,
        credentials: CredentialDirectory,
        platform: Platform,
        digest_ttl: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._docker = docker_client
        self._credentials = credentials
        self._platform = platform
        self._logger = logger
        self._digests = SingleFlightCache(self._fetch_digest, digest_ttl)
        self._pull_secrets: dict[str, PullSecretAssociation] = {}

    async def get_image_digest(
        self, image: str, namespace: str, secret_names: Sequence[str]
    ) -> str:
        """Get the latest digest of an image.

        Parameters
        ----------
        image
            Image reference as it appears in the pod.
        namespace
            Namespace of the pod using the image.
        secret_names
            Names of the pod's image pull secrets. If not empty, these replace
            the pull secrets associated with the image's repository.

        Returns
        -------
        str
            Hex component of the digest.

        Raises
        ------
        RegistryFetchError
            Raised if the digest could not be retrieved.
        """
        if secret_names:
            association = PullSecretAssociation(
                namespace=namespace, secrets=tuple(secret_names)
            )
            self._pull_secrets[repository_key(image)] = association
        return await self._digests.load(image)

    async def resolve(
        self, resource: RegistryResource
    ) -> DockerCredentials | None:
        """Choose credentials for a registry request.

        All pull secrets associated with the repository are read in
        parallel, and the first one with credentials for the registry wins.

        Parameters
        ----------
        resource
            Registry and repository being accessed.

        Returns
        -------
        DockerCredentials or None
            Credentials to use, or `None` for anonymous access.

        Raises
        ------
        Exception
            The first error from reading or parsing a secret, raised if no
            secret had credentials for the registry and at least one secret
            could not be read or parsed.
        """
        association = self._pull_secrets.get(resource.repository)
        if not association:
            return None
        logger = self._logger.bind(
            registry=resource.registry, repository=resource.repository
        )
        tasks = [
            asyncio.create_task(
                self._lookup(association.namespace, s, resource.registry)
            )
            for s in association.secrets
        ]
        errors: list[Exception] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    credentials = await next_done
                except Exception as e:
                    errors.append(e)
                    continue
                if credentials:
                    if errors:
                        logger.debug(
                            "Ignoring unreadable pull secrets",
                            errors=[str(e) for e in errors],
                        )
                    return credentials
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        if errors:
            raise errors[0]
        logger.debug("No pull secret has credentials for registry")
        return None

    async def aclose(self) -> None:
        """Cancel any lookups still in progress."""
        await self._digests.aclose()
        await self._credentials.aclose()

    async def _lookup(
        self, namespace: str, secret_name: str, registry: str
    ) -> DockerCredentials | None:
        auths = await self._credentials.get_auths(namespace, secret_name)
        return auths.get(registry)

    async def _fetch_digest(self, image: str) -> str:
        try:
            reference = DockerReference.from_str(image)
        except ValueError as e:
            raise RegistryFetchError(str(e), image) from e
        resource = RegistryResource(
            registry=reference.registry, repository=repository_key(image)
        )
        try:
            digest = await self._docker.get_image_digest(
                reference,
                resource=resource,
                keychain=self,
                platform=self._platform,
            )
        except Exception as e:
            msg = f"Cannot get image digest ({e!s})"
            raise RegistryFetchError(msg, image) from e
        _, sep, hex_digest = digest.partition(":")
        if not sep or not hex_digest:
            raise RegistryFetchError(f'Invalid digest "{digest}"', image)
        self._logger.debug(
            "Resolved latest image digest", image=image, digest=digest
        )
        return hex_digest
