"""
Permission convergence.

The desired set is the user's explicit per-vhost entries plus, when a ``*``
entry is present, that rule for every other vhost the broker knows about.
It is diffed against the user's live permissions; extra live grants are
revoked.
"""

import logging
from typing import Dict, Optional

from errors import DependencyError, ManagementAPIError
from plugins.reconcilers.rabbitmq.client import expect_status
from plugins.reconcilers.rabbitmq.diff import diff, index_by
from plugins.reconcilers.rabbitmq.models import ALL_VHOSTS, PermissionEntry, UserSpec
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

PERMISSIONS_READY = "PermissionsReady"

PUT_PERMISSIONS_OK = {200, 201, 204}


def desired_permissions(
    spec: UserSpec, known_vhosts=()
) -> Dict[str, PermissionEntry]:
    """
    Build the desired permission map keyed by vhost.

    Explicit entries always win over the wildcard rule.
    """
    desired: Dict[str, PermissionEntry] = {}
    wildcard: Optional[PermissionEntry] = None
    for perm in spec.permissions:
        if perm.vhost == ALL_VHOSTS:
            wildcard = perm
        else:
            desired[perm.vhost] = perm

    if wildcard is not None:
        for vhost in known_vhosts:
            if vhost not in desired:
                desired[vhost] = wildcard
    return desired


class PermissionsComponent(Component):
    name = "permissions"
    condition = PERMISSIONS_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        client, _ = await cpass.connect()
        spec: UserSpec = cpass.spec
        username = spec.username

        known_vhosts = []
        if any(p.vhost == ALL_VHOSTS for p in spec.permissions):
            try:
                known_vhosts = [v["name"] for v in await client.list_vhosts()]
            except ManagementAPIError as e:
                raise DependencyError(
                    f"error listing vhosts for * vhost permissions: {e}"
                ) from e
        desired = desired_permissions(spec, known_vhosts)

        try:
            live = await client.list_permissions_of(username)
        except ManagementAPIError as e:
            if not e.not_found:
                raise DependencyError(
                    f"error listing permissions for user {username}: {e}"
                ) from e
            live = []
        observed = index_by(live, key=lambda p: p["vhost"])

        changes = diff(desired, observed, lambda want, have: want.same_rules(have))

        for vhost, perm in changes.create.items():
            await self._put(cpass, client, vhost, username, perm, "created")
        for vhost, perm in changes.update.items():
            await self._put(cpass, client, vhost, username, perm, "updated")
        for vhost in changes.delete:
            response = await client.clear_permissions_in(vhost, username)
            expect_status(
                response,
                {204},
                f"removing permissions for user {username} and vhost {vhost}",
            )
            await cpass.event(
                "PermissionsDeleted",
                f"RabbitMQ permissions for user {username} in vhost {vhost} deleted",
            )

        cpass.conditions.set_true(PERMISSIONS_READY, "PermissionsSynced")
        return None

    async def _put(self, cpass, client, vhost, username, perm, verb) -> None:
        response = await client.update_permissions_in(
            vhost, username, perm.configure, perm.write, perm.read
        )
        expect_status(
            response,
            PUT_PERMISSIONS_OK,
            f"updating permissions for user {username} and vhost {vhost}",
        )
        await cpass.event(
            f"Permissions{verb.capitalize()}",
            f"RabbitMQ permissions for user {username} in vhost {vhost} {verb}",
        )
