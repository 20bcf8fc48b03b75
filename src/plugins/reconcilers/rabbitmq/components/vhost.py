"""Vhost existence."""

import logging
from typing import Optional

from errors import DependencyError, ManagementAPIError
from plugins.reconcilers.rabbitmq.client import expect_status
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

VHOST_READY = "VhostReady"


class VhostComponent(Component):
    """Create the vhost when absent. Vhosts have no mutable settings."""

    name = "vhost"
    condition = VHOST_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        client, _ = await cpass.connect()
        vhost = cpass.spec.vhost_name

        try:
            await client.get_vhost(vhost)
        except ManagementAPIError as e:
            if not e.not_found:
                raise DependencyError(f"error getting vhost {vhost}: {e}") from e

            response = await client.put_vhost(vhost)
            expect_status(response, {201}, f"creating vhost {vhost}")
            await cpass.event("VhostCreated", f"RabbitMQ vhost {vhost} created")

        cpass.conditions.set_true(
            VHOST_READY, "VhostExists", f"RabbitMQ vhost {vhost} exists"
        )
        return None

    async def finalize(self, cpass: ConvergencePass) -> None:
        client, _ = await cpass.connect()
        vhost = cpass.spec.vhost_name
        response = await client.delete_vhost(vhost)
        if response.status == 404:
            logger.info(f"Vhost {vhost} already gone")
            return
        expect_status(response, {204}, f"deleting vhost {vhost}")
        logger.info(f"Deleted RabbitMQ vhost {vhost}")
