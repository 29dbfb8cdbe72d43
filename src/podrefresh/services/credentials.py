"""Per-run directory of credentials parsed from pull secrets."""

from __future__ import annotations

import base64

from structlog.stdlib import BoundLogger

from ..cache import SingleFlightCache
from ..constants import DOCKER_CONFIG_KEY, DOCKER_CONFIG_SECRET_TYPE
from ..exceptions import (
    MalformedDockerConfigError,
    NotDockerConfigSecretError,
    SecretFetchError,
)
from ..storage.docker import DockerCredentialStore
from ..storage.kubernetes.secret import SecretStorage

__all__ = ["CredentialDirectory"]


class CredentialDirectory:
    """Map pull secret references to the credentials they contain.

    Each secret is read from Kubernetes and parsed at most once, no matter
    how many tasks ask for it concurrently. Secrets are assumed not to change
    during a run, so parsed credentials never expire.

    Parameters
    ----------
    secret_storage
        Storage layer for Kubernetes secrets.
    logger
        Logger to use.
    """

    def __init__(
        self, secret_storage: SecretStorage, logger: BoundLogger
    ) -> None:
        self._storage = secret_storage
        self._logger = logger
        self._cache = SingleFlightCache(self._fetch)

    async def get_auths(
        self, namespace: str, secret_name: str
    ) -> DockerCredentialStore:
        """Get the credentials stored in a pull secret.

        Parameters
        ----------
        namespace
            Namespace of the secret.
        secret_name
            Name of the secret.

        Returns
        -------
        DockerCredentialStore
            Credentials by registry host.

        Raises
        ------
        MalformedDockerConfigError
            Raised if the Docker configuration in the secret is invalid.
        NotDockerConfigSecretError
            Raised if the secret has no ``.dockerconfigjson`` key.
        SecretFetchError
            Raised if the secret does not exist or could not be read.
        """
        return await self._cache.load(f"{namespace}/{secret_name}")

    async def aclose(self) -> None:
        """Cancel any secret lookups still in progress."""
        await self._cache.aclose()

    async def _fetch(self, key: str) -> DockerCredentialStore:
        namespace, secret_name = key.split("/", 1)
        logger = self._logger.bind(namespace=namespace, secret=secret_name)
        secret = await self._storage.read(secret_name, namespace)
        if not secret:
            raise SecretFetchError(secret_name, namespace)
        if secret.type != DOCKER_CONFIG_SECRET_TYPE:
            logger.debug("Pull secret has unexpected type", type=secret.type)
        data = (secret.data or {}).get(DOCKER_CONFIG_KEY)
        if data is None:
            raise NotDockerConfigSecretError(secret_name, namespace)
        try:
            store = DockerCredentialStore.from_dockerconfigjson(
                base64.b64decode(data, validate=True)
            )
        except ValueError as e:
            raise MalformedDockerConfigError(
                secret_name, namespace, str(e)
            ) from e
        logger.debug("Parsed pull secret", registries=len(store))
        return store
