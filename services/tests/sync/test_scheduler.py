"""Tests for the periodic reconcile scheduler."""

import asyncio
from unittest.mock import AsyncMock

from kubernetes.client.rest import ApiException

from tfcontroller.config import CRDConfig, ReconcileConfig
from tfcontroller.models import SyncState, SyncStatus
from tfcontroller.sync.coordinator import SyncCoordinator
from tfcontroller.sync.scheduler import ReconcileScheduler


def _scheduler(coordinator, custom_api, **config) -> ReconcileScheduler:
    return ReconcileScheduler(coordinator, custom_api, CRDConfig(), ReconcileConfig(**config))


def _coordinator() -> AsyncMock:
    coordinator = AsyncMock(spec=SyncCoordinator)
    coordinator.handle.return_value = SyncStatus(state=SyncState.SUCCESS, message="ok")
    return coordinator


class TestReconcileOnce:
    async def test_one_sync_per_resource(self, custom_api, resource_factory):
        custom_api.items = [
            resource_factory("vpc", "infra"),
            resource_factory("eks", "infra"),
            resource_factory("vpc", "staging"),
        ]
        coordinator = _coordinator()
        scheduler = _scheduler(coordinator, custom_api)

        tasks = await scheduler.reconcile_once()
        await asyncio.gather(*tasks)

        handled = sorted(
            (call.args[0].namespace, call.args[0].name)
            for call in coordinator.handle.await_args_list
        )
        assert handled == [("infra", "eks"), ("infra", "vpc"), ("staging", "vpc")]

    async def test_deletion_timestamp_means_finalizing(self, custom_api, resource_factory):
        custom_api.items = [
            resource_factory("vpc", deletion_timestamp="2026-10-18T08:00:00Z"),
            resource_factory("eks"),
        ]
        coordinator = _coordinator()
        scheduler = _scheduler(coordinator, custom_api)

        await asyncio.gather(*await scheduler.reconcile_once())

        finalizing = {
            call.args[0].name: call.args[0].finalizing
            for call in coordinator.handle.await_args_list
        }
        assert finalizing == {"vpc": True, "eks": False}

    async def test_unparseable_items_are_skipped(self, custom_api, resource_factory):
        custom_api.items = [{"metadata": {}}, resource_factory("vpc")]
        coordinator = _coordinator()
        scheduler = _scheduler(coordinator, custom_api)

        tasks = await scheduler.reconcile_once()
        await asyncio.gather(*tasks)

        assert len(tasks) == 1
        assert coordinator.handle.await_count == 1

    async def test_list_failure_skips_tick(self, custom_api):
        custom_api.list_error = ApiException(status=503, reason="Service Unavailable")
        coordinator = _coordinator()
        scheduler = _scheduler(coordinator, custom_api)

        assert await scheduler.reconcile_once() == []
        coordinator.handle.assert_not_awaited()

    async def test_concurrency_is_bounded(self, custom_api, resource_factory):
        custom_api.items = [resource_factory(f"r{i}") for i in range(5)]
        release = asyncio.Event()
        running = 0
        peak = 0

        async def slow_handle(request):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1

        coordinator = _coordinator()
        coordinator.handle.side_effect = slow_handle
        scheduler = _scheduler(coordinator, custom_api, max_concurrent_syncs=2)

        tasks = await scheduler.reconcile_once()
        for _ in range(5):
            await asyncio.sleep(0)
        assert running == 2

        release.set()
        await asyncio.gather(*tasks)
        assert peak == 2
        assert coordinator.handle.await_count == 5

    async def test_backlog_holds_one_task_per_resource(self, custom_api, resource_factory):
        custom_api.items = [resource_factory("vpc"), resource_factory("eks")]
        release = asyncio.Event()

        async def blocked(request):
            await release.wait()

        coordinator = _coordinator()
        coordinator.handle.side_effect = blocked
        scheduler = _scheduler(coordinator, custom_api, max_concurrent_syncs=1)

        first = await scheduler.reconcile_once()
        for _ in range(4):
            assert await scheduler.reconcile_once() == []
        assert len(scheduler.active_tasks) == 2

        release.set()
        await asyncio.gather(*first)
        assert coordinator.handle.await_count == 2

        again = await scheduler.reconcile_once()
        await asyncio.gather(*again)
        assert len(again) == 2


class TestLifecycle:
    async def test_run_until_stopped(self, custom_api, resource_factory):
        custom_api.items = [resource_factory("vpc")]
        handled = asyncio.Event()

        async def handle(request):
            handled.set()

        coordinator = _coordinator()
        coordinator.handle.side_effect = handle
        scheduler = _scheduler(coordinator, custom_api, interval_seconds=3600)

        loop_task = asyncio.create_task(scheduler.run())
        await asyncio.wait_for(handled.wait(), timeout=5)
        await scheduler.stop()
        await asyncio.wait_for(loop_task, timeout=5)

        assert coordinator.handle.await_count == 1

    async def test_stop_cancels_in_flight_syncs(self, custom_api, resource_factory):
        custom_api.items = [resource_factory("vpc")]

        async def hang(request):
            await asyncio.sleep(3600)

        coordinator = _coordinator()
        coordinator.handle.side_effect = hang
        scheduler = _scheduler(coordinator, custom_api)

        tasks = await scheduler.reconcile_once()
        await asyncio.sleep(0)
        await scheduler.stop()

        assert all(task.cancelled() for task in tasks)
        assert scheduler.active_tasks == set()
