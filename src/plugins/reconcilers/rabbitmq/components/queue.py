"""
Queue existence and drift detection.

A queue is declared when absent. Once it exists its durable, auto-delete
and argument settings are only compared, never changed: redeclaring a
queue with different properties is refused by the broker and deleting a
non-empty queue loses messages. Mismatches are reported as drift.
"""

import logging
from typing import Any, List, Optional

from errors import DependencyError, DriftError, ManagementAPIError
from plugins.reconcilers.rabbitmq.client import expect_status
from plugins.reconcilers.rabbitmq.diff import deep_equal
from plugins.reconcilers.rabbitmq.models import QueueSpec
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

QUEUE_READY = "QueueReady"
DRIFT_REQUEUE_AFTER = 60


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def queue_drift(spec: QueueSpec, observed: dict) -> List[str]:
    """
    Describe every explicitly set field that differs from the live queue.

    Unset fields are not compared, nor are arguments present on the broker
    but absent from the spec.
    """
    diffs = []
    if spec.auto_delete is not None and observed.get("auto_delete") != spec.auto_delete:
        diffs.append(
            f"AutoDelete currently {format_value(observed.get('auto_delete'))} "
            f"expecting {format_value(spec.auto_delete)}"
        )
    if spec.durable is not None and observed.get("durable") != spec.durable:
        diffs.append(
            f"Durable currently {format_value(observed.get('durable'))} "
            f"expecting {format_value(spec.durable)}"
        )
    if spec.arguments is not None:
        live_args = observed.get("arguments") or {}
        for key, want in spec.arguments.items():
            if key not in live_args:
                diffs.append(
                    f"Argument {key} currently <not set> expecting {format_value(want)}"
                )
            elif not deep_equal(live_args[key], want):
                diffs.append(
                    f"Argument {key} currently {format_value(live_args[key])} "
                    f"expecting {format_value(want)}"
                )
    return diffs


class QueueComponent(Component):
    name = "queue"
    condition = QUEUE_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        client, _ = await cpass.connect()
        spec: QueueSpec = cpass.spec
        queue, vhost = spec.queue_name, spec.vhost

        try:
            observed = await client.get_queue(vhost, queue)
        except ManagementAPIError as e:
            if not e.not_found:
                raise DependencyError(
                    f"error getting queue {queue} on vhost {vhost}: {e}"
                ) from e
            observed = None

        if observed is None:
            response = await client.declare_queue(
                vhost,
                queue,
                durable=bool(spec.durable),
                auto_delete=bool(spec.auto_delete),
                arguments=spec.arguments,
            )
            expect_status(response, {201}, f"creating queue {queue} on vhost {vhost}")
            await cpass.event(
                "QueueCreated", f"RabbitMQ queue {queue} on vhost {vhost} created"
            )
        else:
            diffs = queue_drift(spec, observed)
            if diffs:
                raise DriftError(
                    f"queue settings do not match: {', '.join(diffs)}",
                    diffs=diffs,
                    requeue_after=DRIFT_REQUEUE_AFTER,
                )

        cpass.conditions.set_true(
            QUEUE_READY, "QueueExists", f"RabbitMQ queue {queue} on vhost {vhost} exists"
        )
        return None

    async def finalize(self, cpass: ConvergencePass) -> None:
        client, _ = await cpass.connect()
        queue, vhost = cpass.spec.queue_name, cpass.spec.vhost
        response = await client.delete_queue(vhost, queue)
        if response.status == 404:
            logger.info(f"Queue {queue} on vhost {vhost} already gone")
            return
        expect_status(response, {204}, f"deleting queue {queue} on vhost {vhost}")
        logger.info(f"Deleted RabbitMQ queue {queue} on vhost {vhost}")
