"""Storage layer for ``Pod`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from aiohttp import ClientError
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError, PodListError

__all__ = ["PodStorage"]


class PodStorage:
    """Storage layer for ``Pod`` objects across all namespaces.

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

    async def list_pages(self, page_size: int) -> AsyncIterator[list[V1Pod]]:
        """Iterate over all pods in the cluster, one page at a time.

        Uses the continue token returned by the Kubernetes API server so that
        only one page of pods is held in memory at a time.

        Parameters
        ----------
        page_size
            Maximum number of pods to request per page.

        Yields
        ------
        list of kubernetes_asyncio.client.V1Pod
            The next page of pods.

        Raises
        ------
        PodListError
            Raised for exceptions from the Kubernetes API server, or if a
            request times out or cannot be sent.
        """
        token: str | None = None
        page = 0
        while True:
            extra_args: dict[str, str | int | float] = {
                "limit": page_size,
                "_request_timeout": self._timeout,
            }
            if token:
                extra_args["_continue"] = token
            try:
                pods = await self._api.list_pod_for_all_namespaces(
                    **extra_args
                )
            except (ApiException, ClientError, TimeoutError) as e:
                raise PodListError.from_exception(
                    "Error listing pods", e, kind="Pod"
                ) from e
            page += 1
            self._logger.debug(
                "Listed page of pods", page=page, count=len(pods.items)
            )
            yield pods.items
            token = pods.metadata._continue if pods.metadata else None
            if not token:
                break

    async def delete(self, name: str, namespace: str) -> bool:
        """Delete a pod.

        If the pod does not exist, this is silently treated as success, since
        it has most likely already been replaced.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace of the pod.

        Returns
        -------
        bool
            `True` if the pod was deleted, `False` if it was already gone.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, or if the
            request times out or cannot be sent.
        """
        self._logger.debug("Deleting Pod", name=name, namespace=namespace)
        try:
            await self._api.delete_namespaced_pod(
                name, namespace, _request_timeout=self._timeout
            )
        except (ApiException, ClientError, TimeoutError) as e:
            if isinstance(e, ApiException) and e.status == 404:
                return False
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind="Pod",
                namespace=namespace,
                name=name,
            ) from e
        return True
