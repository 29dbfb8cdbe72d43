"""Component factory and process context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient
from safir.kubernetes import initialize_kubernetes
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import ROOT_LOGGER
from .exceptions import ClusterConnectionError
from .services.credentials import CredentialDirectory
from .services.digest import DigestResolver
from .services.refresher import PodRefresher
from .storage.docker import DockerRegistryClient
from .storage.kubernetes.pod import PodStorage
from .storage.kubernetes.secret import SecretStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global state.

    Holds the clients shared by every component created by the `Factory`.
    """

    config: Config
    """podrefresh configuration."""

    http_client: AsyncClient
    """Shared HTTP client for Docker registries."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    slack_client: SlackWebhookClient | None
    """Client for Slack alerts, if an alert hook is configured."""

    @classmethod
    def from_config(
        cls, config: Config, slack_client: SlackWebhookClient | None = None
    ) -> Self:
        """Create a new process context from the configuration.

        Kubernetes configuration must already have been loaded.

        Parameters
        ----------
        config
            podrefresh configuration.
        slack_client
            Client for Slack alerts. If not given, one is created from the
            alert hook in the configuration, if any.

        Returns
        -------
        ProcessContext
            Shared context for a podrefresh process.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        timeout = config.registry_timeout.total_seconds()
        if not slack_client and config.alert_hook:
            slack_client = SlackWebhookClient(
                config.alert_hook.get_secret_value(), "podrefresh", logger
            )
        return cls(
            config=config,
            http_client=AsyncClient(timeout=timeout, follow_redirects=True),
            kubernetes_client=client.ApiClient(),
            slack_client=slack_client,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.http_client.aclose()
        await self.kubernetes_client.close()


class Factory:
    """Build podrefresh components.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to pass to created components.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls, config: Config, slack_client: SlackWebhookClient | None = None
    ) -> AsyncIterator[Self]:
        """Async context manager for podrefresh components.

        Loads the Kubernetes configuration, either from inside the cluster
        or from the local kubeconfig file, before creating the clients.

        Parameters
        ----------
        config
            podrefresh configuration.
        slack_client
            Client for Slack alerts, shared with the caller's error
            reporting. If not given, one is created from the configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.

        Raises
        ------
        ClusterConnectionError
            Raised if no Kubernetes configuration could be loaded.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        try:
            await initialize_kubernetes()
        except Exception as e:
            msg = f"Cannot load Kubernetes configuration: {e!s}"
            raise ClusterConnectionError(msg) from e
        context = ProcessContext.from_config(config, slack_client)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    async def aclose(self) -> None:
        """Shut down the factory and the process context."""
        await self._context.aclose()

    def create_credential_directory(self) -> CredentialDirectory:
        """Create a new, empty directory of pull secret credentials."""
        config = self._context.config
        secret_storage = SecretStorage(
            self._context.kubernetes_client,
            config.kubernetes_timeout,
            self._logger,
        )
        return CredentialDirectory(secret_storage, self._logger)

    def create_digest_resolver(self) -> DigestResolver:
        """Create a new digest resolver with empty caches.

        Returns
        -------
        DigestResolver
            Resolver whose caches last until it is closed.
        """
        config = self._context.config
        docker_client = DockerRegistryClient(
            self._context.http_client, self._logger
        )
        return DigestResolver(
            docker_client=docker_client,
            credentials=self.create_credential_directory(),
            platform=config.platform,
            digest_ttl=config.digest_ttl,
            logger=self._logger,
        )

    def create_pod_storage(self) -> PodStorage:
        """Create a storage layer for pods."""
        return PodStorage(
            self._context.kubernetes_client,
            self._context.config.kubernetes_timeout,
            self._logger,
        )

    def create_refresher(self) -> PodRefresher:
        """Create a refresher for a single run.

        Returns
        -------
        PodRefresher
            Refresher with its own run-scoped caches.
        """
        config = self._context.config
        return PodRefresher(
            pod_storage=self.create_pod_storage(),
            resolver=self.create_digest_resolver(),
            owner_kinds=config.owner_kinds,
            page_size=config.page_size,
            queue_size=config.queue_size,
            dry_run=config.dry_run,
            slack_client=self._context.slack_client,
            logger=self._logger,
        )
