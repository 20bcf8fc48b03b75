"""
Companion user for a vhost.

Unless ``skipUser`` is set, every RabbitVhost owns a RabbitUser of the same
name with full permissions on the vhost. ``UserReady`` mirrors that user's
own ``Ready`` condition.
"""

import logging
from typing import Any, Dict, Optional

from plugins.reconcilers.rabbitmq.conditions import READY
from plugins.reconcilers.rabbitmq.models import KIND_USER, VhostSpec
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

USER_READY = "UserReady"


def companion_user_spec(spec: VhostSpec) -> Dict[str, Any]:
    return {
        "username": spec.vhost_name,
        "permissions": [
            {"vhost": spec.vhost_name, "configure": ".*", "write": ".*", "read": ".*"}
        ],
        "connection": spec.connection.model_dump(by_alias=True, exclude_none=True),
    }


class CompanionUserComponent(Component):
    name = "user"
    condition = USER_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        spec: VhostSpec = cpass.spec
        if spec.skip_user:
            return None

        user = await cpass.ctx.apply_resource(
            KIND_USER,
            cpass.namespace,
            cpass.name,
            companion_user_spec(spec),
            owner=cpass.resource,
        )

        ready = None
        for cond in user.get("conditions") or []:
            if cond.get("type") == READY:
                ready = cond
                break

        if ready is not None and ready.get("status") == "True":
            cpass.conditions.set_true(
                USER_READY, "UserReady", f"RabbitUser {cpass.name} is ready"
            )
        else:
            message = (ready or {}).get("message") or (
                f"RabbitUser {cpass.name} is not ready"
            )
            cpass.conditions.set_false(USER_READY, "UserPending", message)
        return None

    async def finalize(self, cpass: ConvergencePass) -> None:
        if cpass.spec.skip_user:
            return
        await cpass.ctx.delete_resource(KIND_USER, cpass.namespace, cpass.name)
