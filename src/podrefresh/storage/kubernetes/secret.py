"""Storage layer for ``Secret`` objects."""

from __future__ import annotations

from datetime import timedelta

from aiohttp import ClientError
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Secret
from structlog.stdlib import BoundLogger

from ...exceptions import SecretFetchError

__all__ = ["SecretStorage"]


class SecretStorage:
    """Storage layer for ``Secret`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each individual Kubernetes API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._timeout = timeout.total_seconds()
        self._logger = logger

    async def read(self, name: str, namespace: str) -> V1Secret | None:
        """Read a secret.

        Parameters
        ----------
        name
            Name of the secret.
        namespace
            Namespace of the secret.

        Returns
        -------
        kubernetes_asyncio.client.V1Secret or None
            The secret, or `None` if it does not exist.

        Raises
        ------
        SecretFetchError
            Raised for exceptions from the Kubernetes API server, or if the
            request times out or cannot be sent.
        """
        self._logger.debug("Reading Secret", name=name, namespace=namespace)
        try:
            return await self._api.read_namespaced_secret(
                name, namespace, _request_timeout=self._timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            body = e.body if e.body else e.reason
            raise SecretFetchError(
                name, namespace, status=e.status, body=body
            ) from e
        except (ClientError, TimeoutError) as e:
            body = type(e).__name__
            if str(e):
                body += f": {e!s}"
            raise SecretFetchError(name, namespace, body=body) from e
