"""
Operator Controller - Main reconciliation loop.

Similar to Kubernetes controllers, continuously reconciles desired state with
actual state. Each due resource is dispatched to the reconciler registered
for its kind; the outcome decides when it is looked at again.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from config import ControllerConfig
from db import FINALIZER, DatabaseManager, ResourceStatus
from events import EventBus, EventType, ResourceEvent, Subscription
from plugins import get_registry
from plugins.reconcilers.base import (
    DatabaseReconcilerContext,
    ReconcileResult,
    ReconcilerContext,
)
from plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Polls the store for resources that need reconciliation and dispatches
    each one to its reconciler under a concurrency limit. A second loop
    consumes resource events and re-triggers reconcilers that watch the
    changed kind.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        registry: Optional[PluginRegistry] = None,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
        ctx: Optional[ReconcilerContext] = None,
    ):
        self.db = db_manager
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig()
        self.reconcile_interval = self.config.reconcile_interval
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self.running = False
        self._event_bus = event_bus or EventBus()
        self.ctx = ctx or DatabaseReconcilerContext(self.db, self._event_bus)

        self._tasks: List[asyncio.Task] = []
        self._watch_subscription: Optional[Subscription] = None

    async def start(self):
        """Start the controller reconciliation and watch loops."""
        logger.info("Starting Operator Controller")
        self.running = True

        await self.db.reset_in_flight()
        await self._start_reconcilers()

        self._tasks = [asyncio.create_task(self._reconciliation_loop())]
        watched = self.registry.watched_kinds()
        if watched:
            self._watch_subscription = await self._event_bus.subscribe(kinds=watched)
            self._tasks.append(
                asyncio.create_task(self._watch_loop(self._watch_subscription))
            )

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller loops cancelled")
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def stop(self):
        """Stop the controller and all reconciler plugins gracefully."""
        logger.info("Stopping Operator Controller")
        self.running = False

        if self._watch_subscription is not None:
            await self._event_bus.unsubscribe(self._watch_subscription)
            self._watch_subscription = None

        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks.clear()

        await self._stop_reconcilers()

    async def _start_reconcilers(self) -> None:
        """Give every registered reconciler a chance to prepare."""
        for reconciler_name in self.registry.list_reconciler_plugins():
            reconciler = self.registry.get_reconciler_plugin(reconciler_name)
            await reconciler.start(self.ctx)
            logger.info(f"Started reconciler plugin: {reconciler_name}")

    async def _stop_reconcilers(self) -> None:
        """Stop all registered reconciler plugins."""
        for reconciler_name in self.registry.list_reconciler_plugins():
            try:
                reconciler = self.registry.get_reconciler_plugin(reconciler_name)
                await reconciler.stop()
                logger.info(f"Stopped reconciler plugin: {reconciler_name}")
            except Exception as e:
                logger.error(f"Error stopping reconciler '{reconciler_name}': {e}")

    async def _reconciliation_loop(self):
        """Main reconciliation loop - watches for resources needing reconciliation."""
        while self.running:
            try:
                await self.run_once()

                # Sleep before next reconciliation cycle
                await asyncio.sleep(self.reconcile_interval)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
                await asyncio.sleep(10)  # Brief pause on error

    async def run_once(self) -> int:
        """Reconcile every resource that is currently due. Returns the count."""
        resources = await self.db.get_resources_needing_reconciliation(
            limit=self.max_concurrent_reconciles * 2
        )

        if resources:
            logger.info(f"Found {len(resources)} resources needing reconciliation")
            tasks = [self._reconcile_resource(resource) for resource in resources]
            await asyncio.gather(*tasks, return_exceptions=True)

        return len(resources)

    async def _watch_loop(self, subscription: Subscription) -> None:
        """Re-trigger reconcilers watching the kind of each incoming event."""
        async for event in subscription:
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(
                    f"Error handling {event.event_type.value} event for "
                    f"{event.kind} {event.namespace}/{event.name}: {e}",
                    exc_info=True,
                )

    async def handle_event(self, event: ResourceEvent) -> List[tuple]:
        """Map one event to the resources it should wake and schedule them."""
        requested = []
        for reconciler, mapper in self.registry.get_watchers(event.kind):
            for kind, namespace, name in await mapper(event, self.ctx):
                await self.ctx.request_reconcile(kind, namespace, name)
                requested.append((kind, namespace, name))
        return requested

    def _determine_trigger_reason(self, resource: Dict[str, Any]) -> str:
        """Determine why this reconciliation was triggered."""
        if resource.get("status") == ResourceStatus.DELETING.value:
            return "deletion"
        elif resource.get("last_reconcile_time") is None:
            return "initial"
        elif resource.get("generation", 0) > resource.get("observed_generation", 0):
            return "spec_change"
        elif resource.get("status") == ResourceStatus.FAILED.value:
            return "retry"
        else:
            # Periodic resync or an explicit re-run request
            return "scheduled"

    async def _reconcile_resource(self, resource: Dict[str, Any]):
        """
        Reconcile a single resource.

        Dispatches to the reconciler registered for the resource's kind and
        maps the result onto the resource's stored status.
        """
        async with self.semaphore:
            resource_id = resource["id"]
            label = f"{resource['kind']} {resource.get('namespace')}/{resource['name']}"
            generation = resource.get("generation", 0)
            start_time = time.monotonic()
            trigger_reason = self._determine_trigger_reason(resource)

            reconciler = self.registry.get_reconciler_for_resource_type(resource["kind"])
            if reconciler is None:
                logger.warning(f"No reconciler for {label}, skipping")
                await self.db.update_resource_status(
                    resource_id,
                    ResourceStatus.FAILED,
                    message=f"no reconciler registered for kind {resource['kind']}",
                    observed_generation=generation,
                )
                return

            try:
                if trigger_reason == "deletion":
                    await self._finalize_resource(reconciler, resource)
                    return

                # Mark as reconciling
                await self.db.update_resource_status(
                    resource_id,
                    ResourceStatus.RECONCILING,
                    message="Starting reconciliation",
                )

                result = await reconciler.reconcile(resource, self.ctx)
                await self._record_result(resource, result)
                await self._event_bus.publish(
                    ResourceEvent.from_resource(EventType.RECONCILED, resource)
                )

                duration = time.monotonic() - start_time
                logger.info(
                    f"Reconciled {label} ({trigger_reason}) in {duration:.2f}s: "
                    f"{'ready' if result.success else result.message}"
                )

            except Exception as e:
                logger.error(f"Error reconciling {label}: {e}", exc_info=True)
                await self._record_result(
                    resource,
                    ReconcileResult(
                        success=False, message=f"Reconciliation error: {str(e)}"
                    ),
                )

    async def _record_result(
        self, resource: Dict[str, Any], result: ReconcileResult
    ) -> None:
        """
        Store the outcome of a pass and schedule the next one.

        Ready resources are resynced periodically, pending ones re-run after
        their requested delay, retryable failures back off exponentially
        unless they asked for a specific delay, and fatal failures wait for
        the spec to change.
        """
        resource_id = resource["id"]
        generation = resource.get("generation", 0)

        if result.success:
            await self.db.update_resource_status(
                resource_id,
                ResourceStatus.READY,
                message=result.message or "Reconciliation successful",
                observed_generation=generation,
                requeue_after=result.requeue_after or self.config.resync_interval,
            )
        elif result.pending:
            await self.db.update_resource_status(
                resource_id,
                ResourceStatus.PENDING,
                message=result.message,
                observed_generation=generation,
                requeue_after=result.requeue_after or self.reconcile_interval,
            )
        elif not result.retryable:
            logger.error(
                f"Fatal error reconciling {resource['kind']} {resource['name']}, "
                f"not retrying until the spec changes: {result.message}"
            )
            await self.db.update_resource_status(
                resource_id,
                ResourceStatus.FAILED,
                message=result.message,
                observed_generation=generation,
                requeue_after=None,
            )
        else:
            await self.db.update_resource_status(
                resource_id,
                ResourceStatus.FAILED,
                message=result.message,
                observed_generation=generation,
                requeue_after=result.requeue_after,
            )
            if result.requeue_after is None:
                await self.db.requeue_with_backoff(
                    resource_id,
                    base_delay=self.config.backoff_base_delay,
                    max_delay=self.config.backoff_max_delay,
                    jitter_factor=self.config.backoff_jitter_factor,
                )

    async def _finalize_resource(self, reconciler, resource: Dict[str, Any]) -> None:
        """Run the reconciler's finalizer, then drop the resource once clear."""
        resource_id = resource["id"]
        result = await reconciler.finalize(resource, self.ctx)

        if not result.success:
            logger.error(f"Failed to finalize {resource['name']}: {result.message}")
            await self.db.update_resource_status(
                resource_id,
                ResourceStatus.DELETING,
                message=result.message,
                requeue_after=result.requeue_after or self.config.backoff_base_delay,
            )
            return

        await self.db.remove_finalizer(resource_id, FINALIZER)
        remaining = await self.db.get_finalizers(resource_id)
        if not remaining:
            await self.db.hard_delete_resource(resource_id)
            logger.info(f"Finalized and deleted {resource['kind']} {resource['name']}")
        else:
            logger.info(
                f"Finalizer removed for {resource['name']}, waiting on: {remaining}"
            )

    async def trigger_reconciliation(self, kind: str, namespace: str, name: str):
        """Manually trigger reconciliation for a specific resource."""
        logger.info(f"Manually triggering reconciliation for {kind} {namespace}/{name}")
        await self.ctx.request_reconcile(kind, namespace, name)
