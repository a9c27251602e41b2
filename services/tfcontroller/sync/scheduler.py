"""Periodic reconcile loop: re-sync every Terraform resource on a fixed interval.

This is a convergence backstop for missed external triggers. It does not
deduplicate against syncs started by the HTTP path; idempotent object names
and last-write-wins status keep overlapping syncs well defined.
"""

import asyncio
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from tfcontroller.config import CRDConfig, ReconcileConfig
from tfcontroller.logging_config import get_logger
from tfcontroller.models import SyncRequest
from tfcontroller.sync.coordinator import SyncCoordinator

logger = get_logger(__name__)


class ReconcileScheduler:
    """Fans out one sync task per listed resource, bounded by a semaphore."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        custom_api: client.CustomObjectsApi,
        crd: CRDConfig,
        config: ReconcileConfig,
    ) -> None:
        self._coordinator = coordinator
        self._custom = custom_api
        self._crd = crd
        self._interval = config.interval_seconds
        self._semaphore = asyncio.Semaphore(max(1, config.max_concurrent_syncs))
        self._shutdown = asyncio.Event()
        self.active_tasks: set[asyncio.Task] = set()
        self._pending: dict[tuple[str, str], asyncio.Task] = {}

    async def run(self) -> None:
        """Reconcile every interval until stop() is called."""
        while not self._shutdown.is_set():
            try:
                await self.reconcile_once()
            except Exception as e:
                logger.error("Reconcile pass failed", error=str(e))

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
                return  # Shutdown signaled
            except TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop ticking and cancel syncs still in flight."""
        self._shutdown.set()
        for task in list(self.active_tasks):
            task.cancel()
        if self.active_tasks:
            await asyncio.gather(*self.active_tasks, return_exceptions=True)

    async def list_resources(self) -> list[dict[str, Any]]:
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: self._custom.list_cluster_custom_object(
                group=self._crd.group,
                version=self._crd.version,
                plural=self._crd.plural,
            ),
        )
        return result.get("items", [])

    async def reconcile_once(self) -> list[asyncio.Task]:
        """List all resources and start one sync task per resource.

        Returns the spawned tasks; they run independently of this call. A
        resource whose previous sync is still queued or running is skipped, so
        the backlog never exceeds one task per resource.
        """
        logger.info("Starting reconciliation loop")
        try:
            items = await self.list_resources()
        except ApiException as e:
            logger.error("Error fetching Terraform resources", error=f"({e.status}) {e.reason}")
            return []

        logger.info("Fetched Terraform resources", count=len(items))

        spawned = []
        for item in items:
            try:
                request = SyncRequest.from_resource(item)
            except ValidationError as e:
                logger.error(
                    "Skipping unparseable resource",
                    resource=item.get("metadata", {}).get("name"),
                    error=str(e),
                )
                continue

            key = (request.namespace, request.name)
            if key in self._pending:
                logger.debug(
                    "Sync already queued, skipping",
                    resource=request.name,
                    namespace=request.namespace,
                )
                continue

            task = asyncio.create_task(self._bounded_sync(request))
            self._pending[key] = task
            self.active_tasks.add(task)
            task.add_done_callback(self.active_tasks.discard)
            task.add_done_callback(lambda _t, key=key: self._pending.pop(key, None))
            spawned.append(task)
        return spawned

    async def _bounded_sync(self, request: SyncRequest) -> None:
        async with self._semaphore:
            logger.info("Handling resource", resource=request.name, namespace=request.namespace)
            await self._coordinator.handle(request)
