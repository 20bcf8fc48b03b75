"""Unit tests for controller.py - Main reconciliation controller."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from controller import Controller
from config import ControllerConfig
from db import FINALIZER, ResourceStatus
from events import EventBus, EventType, ResourceEvent
from plugins.reconcilers.base import ReconcileResult, ReconcilerPlugin
from plugins.registry import PluginRegistry


class StubReconciler(ReconcilerPlugin):
    """Reconciler returning canned results."""

    def __init__(self, result=None, finalize_result=None, watches=None):
        self.result = result or ReconcileResult(success=True, message="ok")
        self.finalize_result = finalize_result or ReconcileResult(success=True)
        self._watches = watches or {}
        self.reconciled = []
        self.finalized = []
        self.started = False
        self.stopped = False

    @property
    def name(self) -> str:
        return "stub"

    @property
    def resource_types(self):
        return ["RabbitVhost"]

    @property
    def watches(self):
        return self._watches

    async def start(self, ctx):
        self.started = True

    async def reconcile(self, resource, ctx):
        self.reconciled.append(resource["name"])
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def finalize(self, resource, ctx):
        self.finalized.append(resource["name"])
        return self.finalize_result

    async def stop(self):
        self.stopped = True


@pytest.fixture
def mock_db():
    """Create a mock database manager."""
    db = AsyncMock()
    db.get_resources_needing_reconciliation = AsyncMock(return_value=[])
    db.get_finalizers = AsyncMock(return_value=[])
    db.hard_delete_resource = AsyncMock(return_value=True)
    db.reset_in_flight = AsyncMock(return_value=0)
    return db


@pytest.fixture
def reconciler():
    return StubReconciler()


@pytest.fixture
def mock_ctx():
    return AsyncMock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def controller(mock_db, reconciler, mock_ctx, event_bus):
    registry = PluginRegistry()
    registry.register_reconciler_plugin(reconciler)
    return Controller(
        mock_db,
        registry=registry,
        config=ControllerConfig(),
        event_bus=event_bus,
        ctx=mock_ctx,
    )


def status_calls(mock_db):
    """(status, kwargs) for every update_resource_status call."""
    return [
        (call.args[1], call.kwargs)
        for call in mock_db.update_resource_status.call_args_list
    ]


class TestController:
    """Tests for Controller class."""

    def test_init(self, controller):
        """Test controller initialization."""
        assert controller.reconcile_interval == 10
        assert controller.max_concurrent_reconciles == 5
        assert controller.running is False

    def test_trigger_reason(self, controller, sample_resource):
        assert controller._determine_trigger_reason(sample_resource) == "initial"

        sample_resource["last_reconcile_time"] = "2024-01-01"
        assert controller._determine_trigger_reason(sample_resource) == "spec_change"

        sample_resource["observed_generation"] = 1
        assert controller._determine_trigger_reason(sample_resource) == "scheduled"

        sample_resource["status"] = "failed"
        assert controller._determine_trigger_reason(sample_resource) == "retry"

        sample_resource["status"] = "deleting"
        assert controller._determine_trigger_reason(sample_resource) == "deletion"


@pytest.mark.asyncio
class TestReconcileResource:
    """Tests for dispatching one resource and recording the outcome."""

    async def test_success_schedules_resync(
        self, controller, mock_db, reconciler, sample_resource
    ):
        await controller._reconcile_resource(sample_resource)

        assert reconciler.reconciled == ["testing"]
        calls = status_calls(mock_db)
        assert calls[0][0] == ResourceStatus.RECONCILING
        status, kwargs = calls[1]
        assert status == ResourceStatus.READY
        assert kwargs["observed_generation"] == 1
        assert kwargs["requeue_after"] == 300

    async def test_success_publishes_reconciled(
        self, controller, event_bus, sample_resource
    ):
        subscription = await event_bus.subscribe()

        await controller._reconcile_resource(sample_resource)

        event = await subscription.__anext__()
        assert event.event_type == EventType.RECONCILED
        assert event.key == ("RabbitVhost", "default", "testing")

    async def test_pending_uses_requested_delay(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = ReconcileResult(
            pending=True, message="user pending", requeue_after=10
        )

        await controller._reconcile_resource(sample_resource)

        status, kwargs = status_calls(mock_db)[-1]
        assert status == ResourceStatus.PENDING
        assert kwargs["message"] == "user pending"
        assert kwargs["requeue_after"] == 10
        mock_db.requeue_with_backoff.assert_not_called()

    async def test_pending_without_delay_polls(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = ReconcileResult(pending=True, message="waiting")

        await controller._reconcile_resource(sample_resource)

        assert status_calls(mock_db)[-1][1]["requeue_after"] == 10

    async def test_fatal_failure_is_not_rescheduled(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = ReconcileResult(message="host is required", retryable=False)

        await controller._reconcile_resource(sample_resource)

        status, kwargs = status_calls(mock_db)[-1]
        assert status == ResourceStatus.FAILED
        assert kwargs["requeue_after"] is None
        assert kwargs["observed_generation"] == 1
        mock_db.requeue_with_backoff.assert_not_called()

    async def test_retryable_failure_with_delay(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = ReconcileResult(message="drift", requeue_after=60)

        await controller._reconcile_resource(sample_resource)

        status, kwargs = status_calls(mock_db)[-1]
        assert status == ResourceStatus.FAILED
        assert kwargs["requeue_after"] == 60
        mock_db.requeue_with_backoff.assert_not_called()

    async def test_retryable_failure_backs_off(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = ReconcileResult(message="broker unreachable")

        await controller._reconcile_resource(sample_resource)

        mock_db.requeue_with_backoff.assert_called_once_with(
            1, base_delay=15, max_delay=900, jitter_factor=0.1
        )

    async def test_exception_is_recorded_as_retryable(
        self, controller, mock_db, reconciler, sample_resource
    ):
        reconciler.result = RuntimeError("boom")

        await controller._reconcile_resource(sample_resource)

        status, kwargs = status_calls(mock_db)[-1]
        assert status == ResourceStatus.FAILED
        assert kwargs["message"] == "Reconciliation error: boom"
        mock_db.requeue_with_backoff.assert_called_once()

    async def test_no_reconciler_for_kind(self, controller, mock_db, sample_resource):
        sample_resource["kind"] = "Unknown"

        await controller._reconcile_resource(sample_resource)

        status, kwargs = status_calls(mock_db)[0]
        assert status == ResourceStatus.FAILED
        assert "no reconciler registered for kind Unknown" in kwargs["message"]

    async def test_run_once(self, controller, mock_db, reconciler, sample_resource):
        mock_db.get_resources_needing_reconciliation.return_value = [sample_resource]

        assert await controller.run_once() == 1

        mock_db.get_resources_needing_reconciliation.assert_called_once_with(limit=10)
        assert reconciler.reconciled == ["testing"]

    async def test_run_once_nothing_due(self, controller, reconciler):
        assert await controller.run_once() == 0
        assert reconciler.reconciled == []


@pytest.mark.asyncio
class TestFinalization:
    """Tests for resources marked for deletion."""

    @pytest.fixture
    def deleting(self, sample_resource):
        sample_resource["status"] = "deleting"
        return sample_resource

    async def test_finalize_then_hard_delete(
        self, controller, mock_db, reconciler, deleting
    ):
        await controller._reconcile_resource(deleting)

        assert reconciler.finalized == ["testing"]
        assert reconciler.reconciled == []
        mock_db.remove_finalizer.assert_called_once_with(1, FINALIZER)
        mock_db.hard_delete_resource.assert_called_once_with(1)

    async def test_other_finalizers_block_delete(self, controller, mock_db, deleting):
        mock_db.get_finalizers.return_value = ["someone-else"]

        await controller._reconcile_resource(deleting)

        mock_db.hard_delete_resource.assert_not_called()

    async def test_failed_finalize_is_retried(
        self, controller, mock_db, reconciler, deleting
    ):
        reconciler.finalize_result = ReconcileResult(message="error deleting vhost")

        await controller._reconcile_resource(deleting)

        mock_db.remove_finalizer.assert_not_called()
        status, kwargs = status_calls(mock_db)[-1]
        assert status == ResourceStatus.DELETING
        assert kwargs["requeue_after"] == 15


@pytest.mark.asyncio
class TestWatches:
    """Tests for event-triggered re-evaluation."""

    async def test_handle_event_requests_mapped_resources(self, mock_db, mock_ctx):
        mapper = AsyncMock(return_value=[("RabbitUser", "default", "app")])
        watcher = StubReconciler(watches={"RabbitVhost": mapper})
        registry = PluginRegistry()
        registry.register_reconciler_plugin(watcher)
        controller = Controller(mock_db, registry=registry, ctx=mock_ctx)
        event = ResourceEvent(EventType.CREATED, "RabbitVhost", "default", "new")

        requested = await controller.handle_event(event)

        assert requested == [("RabbitUser", "default", "app")]
        mapper.assert_called_once_with(event, mock_ctx)
        mock_ctx.request_reconcile.assert_called_once_with(
            "RabbitUser", "default", "app"
        )

    async def test_unwatched_kind_is_ignored(self, controller, mock_ctx):
        event = ResourceEvent(EventType.CREATED, "RabbitQueue", "default", "q")

        assert await controller.handle_event(event) == []
        mock_ctx.request_reconcile.assert_not_called()

    async def test_watch_loop_survives_mapper_errors(
        self, mock_db, mock_ctx, event_bus
    ):
        mapper = AsyncMock(
            side_effect=[RuntimeError("boom"), [("RabbitUser", "default", "app")]]
        )
        registry = PluginRegistry()
        registry.register_reconciler_plugin(
            StubReconciler(watches={"RabbitVhost": mapper})
        )
        controller = Controller(
            mock_db, registry=registry, event_bus=event_bus, ctx=mock_ctx
        )
        subscription = await event_bus.subscribe(kinds=["RabbitVhost"])
        for name in ("first", "second"):
            await event_bus.publish(
                ResourceEvent(EventType.RECONCILED, "RabbitVhost", "default", name)
            )
        await event_bus.unsubscribe(subscription)

        await controller._watch_loop(subscription)

        assert mapper.call_count == 2
        mock_ctx.request_reconcile.assert_called_once_with(
            "RabbitUser", "default", "app"
        )

    async def test_trigger_reconciliation(self, controller, mock_ctx):
        await controller.trigger_reconciliation("RabbitVhost", "default", "testing")
        mock_ctx.request_reconcile.assert_called_once_with(
            "RabbitVhost", "default", "testing"
        )


@pytest.mark.asyncio
class TestLifecycle:
    async def test_stop_stops_reconcilers(self, controller, reconciler):
        controller.running = True
        await controller.stop()
        assert controller.running is False
        assert reconciler.stopped

    async def test_start_reconcilers(self, controller, reconciler):
        await controller._start_reconcilers()
        assert reconciler.started

    async def test_stop_survives_reconciler_error(self, controller, reconciler):
        reconciler.stop = MagicMock(side_effect=RuntimeError("stuck"))
        await controller.stop()

    async def test_start_without_watches_skips_watch_loop(
        self, controller, mock_db, event_bus
    ):
        controller._reconciliation_loop = AsyncMock()

        await controller.start()

        mock_db.reset_in_flight.assert_called_once()
        assert len(controller._tasks) == 1
        assert len(event_bus) == 0

    async def test_start_subscribes_to_watched_kinds(
        self, mock_db, mock_ctx, event_bus
    ):
        watcher = StubReconciler(watches={"RabbitUser": AsyncMock(return_value=[])})
        registry = PluginRegistry()
        registry.register_reconciler_plugin(watcher)
        controller = Controller(
            mock_db, registry=registry, event_bus=event_bus, ctx=mock_ctx
        )
        controller._reconciliation_loop = AsyncMock()
        controller._watch_loop = AsyncMock()

        await controller.start()

        subscription = controller._watch_subscription
        assert subscription.kinds == frozenset({"RabbitUser"})
        controller._watch_loop.assert_called_once_with(subscription)

        await controller.stop()
        assert len(event_bus) == 0
