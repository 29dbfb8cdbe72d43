"""Delete pods whose always-pull images have changed in their registry."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from kubernetes_asyncio.client import V1ContainerStatus, V1Pod
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..exceptions import KubernetesError, PodListError
from ..models.domain.kubernetes import (
    ContainerCheck,
    ContainerCheckResult,
    PodDecision,
    PodPhase,
    PullPolicy,
    RefreshResult,
)
from ..storage.kubernetes.pod import PodStorage
from ..util import AppendOnlyList, digest_from_image_id
from .digest import DigestResolver

__all__ = ["PodRefresher"]


class PodRefresher:
    """Find and delete pods running outdated always-pull images.

    A single run lists every pod in the cluster, checks the images of
    eligible pods against their registries in parallel, and then deletes the
    pods whose images have changed so that their controllers recreate them.

    Parameters
    ----------
    pod_storage
        Storage layer for pods.
    resolver
        Resolver for the latest digests of images.
    owner_kinds
        Owner kinds whose pods may be deleted, since their controllers will
        recreate them.
    page_size
        Number of pods to request from Kubernetes at a time.
    queue_size
        Maximum number of listed pods waiting to be checked.
    dry_run
        If `True`, report the pods that would be deleted but don't delete
        them.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pod_storage: PodStorage,
        resolver: DigestResolver,
        owner_kinds: frozenset[str],
        page_size: int,
        queue_size: int,
        dry_run: bool = False,
        slack_client: SlackWebhookClient | None = None,
        logger: BoundLogger,
    ) -> None:
        self._storage = pod_storage
        self._resolver = resolver
        self._owner_kinds = owner_kinds
        self._page_size = page_size
        self._queue_size = queue_size
        self._dry_run = dry_run
        self._slack = slack_client
        self._logger = logger

    async def run(self) -> RefreshResult:
        """Check all pods and delete those with outdated images.

        Pods already selected for deletion are still deleted if listing pods
        fails partway through, after which the listing error is raised.

        Returns
        -------
        RefreshResult
            Summary of the run.

        Raises
        ------
        PodListError
            Raised if listing pods failed.
        """
        result = RefreshResult()
        decisions: AppendOnlyList[PodDecision] = AppendOnlyList()
        queue: asyncio.Queue[V1Pod | None] = asyncio.Queue(self._queue_size)
        listing_error = None
        self._logger.info("Checking pods for outdated images")
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._list_pods(queue, result))
                tg.create_task(
                    self._consume_pods(queue, tg, decisions, result)
                )
        except* PodListError as excgroup:
            listing_error = excgroup.exceptions[0]
        finally:
            await self._resolver.aclose()

        if listing_error:
            msg = "Listing pods failed, deleting already selected pods"
            self._logger.error(msg, error=str(listing_error))
        await self._delete_pods(decisions, result)
        self._logger.info(
            "Finished checking pods",
            scanned=result.scanned,
            checked=result.checked,
            selected=len(result.selected),
            deleted=len(result.deleted),
            failed=len(result.failed),
        )
        if listing_error:
            raise listing_error
        return result

    async def _list_pods(
        self, queue: asyncio.Queue[V1Pod | None], result: RefreshResult
    ) -> None:
        """Put every pod in the cluster on the queue, then `None`."""
        async for page in self._storage.list_pages(self._page_size):
            for pod in page:
                result.scanned += 1
                await queue.put(pod)
        await queue.put(None)

    async def _consume_pods(
        self,
        queue: asyncio.Queue[V1Pod | None],
        tg: asyncio.TaskGroup,
        decisions: AppendOnlyList[PodDecision],
        result: RefreshResult,
    ) -> None:
        """Start a check task for every eligible pod on the queue."""
        while (pod := await queue.get()) is not None:
            always_pull = self._get_always_pull_containers(pod)
            if not always_pull:
                continue
            result.checked += 1
            tg.create_task(self._check_pod(pod, always_pull, decisions))

    def _get_always_pull_containers(self, pod: V1Pod) -> set[str]:
        """Determine which containers of a pod need to be checked.

        Parameters
        ----------
        pod
            Pod to check.

        Returns
        -------
        set of str
            Names of the containers with an ``Always`` pull policy, or the
            empty set if the pod is not eligible to be refreshed.
        """
        name = pod.metadata.name
        logger = self._logger.bind(namespace=pod.metadata.namespace, pod=name)
        phase = pod.status.phase if pod.status else None
        if phase != PodPhase.RUNNING:
            logger.debug("Skipping pod that is not running", phase=phase)
            return set()
        owners = pod.metadata.owner_references
        if not owners:
            logger.debug("Skipping pod with no owner")
            return set()

        # Only the first owner is considered. A pod whose controller will not
        # recreate it would be gone for good once deleted.
        if owners[0].kind not in self._owner_kinds:
            logger.debug("Skipping pod with owner", owner_kind=owners[0].kind)
            return set()

        containers = [
            *(pod.spec.containers or []),
            *(pod.spec.init_containers or []),
        ]
        return {
            c.name
            for c in containers
            if c.image_pull_policy == PullPolicy.ALWAYS.value
        }

    async def _check_pod(
        self,
        pod: V1Pod,
        always_pull: set[str],
        decisions: AppendOnlyList[PodDecision],
    ) -> None:
        """Check whether any always-pull image of a pod has changed.

        Parameters
        ----------
        pod
            Pod to check.
        always_pull
            Names of the containers to check.
        decisions
            Where to record the pod if it should be deleted.
        """
        namespace = pod.metadata.namespace
        logger = self._logger.bind(namespace=namespace, pod=pod.metadata.name)
        secret_names = [
            s.name for s in pod.spec.image_pull_secrets or [] if s.name
        ]
        statuses = [
            *(pod.status.container_statuses or []),
            *(pod.status.init_container_statuses or []),
        ]
        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(
                    self._check_container(s, namespace, secret_names, logger)
                )
                for s in statuses
                if s.name in always_pull
            ]
        results = [t.result() for t in tasks]

        outdated = [
            r.container
            for r in results
            if r.check == ContainerCheck.NEEDS_UPDATE
        ]
        if outdated:
            logger.info("Pod has outdated images", containers=outdated)
            decision = PodDecision(namespace=namespace, name=pod.metadata.name)
            decisions.append(decision)
        else:
            logger.debug("Pod images are current")

    async def _check_container(
        self,
        status: V1ContainerStatus,
        namespace: str,
        secret_names: Sequence[str],
        logger: BoundLogger,
    ) -> ContainerCheckResult:
        """Compare the running image of a container to its registry.

        Failures are logged and reported as a failed check, which never
        causes the pod to be deleted.
        """
        logger = logger.bind(container=status.name, image=status.image)
        current = digest_from_image_id(status.image_id or "")
        if not current:
            logger.debug("Container has no image ID yet")
            return ContainerCheckResult(status.name, ContainerCheck.UNCHANGED)
        try:
            latest = await self._resolver.get_image_digest(
                status.image, namespace, secret_names
            )
        except Exception as e:
            logger.warning("Cannot get latest image digest", error=str(e))
            return ContainerCheckResult(
                status.name, ContainerCheck.FAILED, error=e
            )
        if current != latest:
            logger.debug("Image has changed", current=current, latest=latest)
            return ContainerCheckResult(
                status.name, ContainerCheck.NEEDS_UPDATE
            )
        return ContainerCheckResult(status.name, ContainerCheck.UNCHANGED)

    async def _delete_pods(
        self, decisions: AppendOnlyList[PodDecision], result: RefreshResult
    ) -> None:
        """Delete the selected pods one at a time.

        Failures are logged and do not stop the remaining deletions.
        """
        for decision in decisions:
            result.selected.append(decision)
            logger = self._logger.bind(
                namespace=decision.namespace, pod=decision.name
            )
            if self._dry_run:
                logger.info("Would delete pod to force image pull (dry run)")
                continue
            try:
                deleted = await self._storage.delete(
                    decision.name, decision.namespace
                )
            except KubernetesError as e:
                logger.exception("Failed to delete pod")
                result.failed.append(decision)
                if self._slack:
                    await self._slack.post_exception(e)
                continue
            if deleted:
                logger.info("Deleted pod to force image pull")
                result.deleted.append(decision)
            else:
                logger.info("Pod was already deleted")
