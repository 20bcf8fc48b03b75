"""
Policy convergence for a vhost.

Policies are named ``<vhost>-<key>`` on the broker so that keys reused
across vhosts never collide. Every policy in the vhost that is not in the
desired set is deleted.
"""

import logging
from typing import Any, Dict, Optional

from errors import ConfigurationError, DependencyError, ManagementAPIError
from plugins.reconcilers.rabbitmq.client import expect_status
from plugins.reconcilers.rabbitmq.diff import deep_equal, diff, index_by
from plugins.reconcilers.rabbitmq.models import VhostSpec
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

POLICIES_READY = "PoliciesReady"

PUT_POLICY_OK = {201, 204}

SCALAR_TYPES = (str, bool, int, float)


def policy_name(vhost: str, key: str) -> str:
    return f"{vhost}-{key}"


def decode_definition(key: str, definition: Dict[str, Any], vhost: str) -> Dict[str, Any]:
    """Check that every definition value is a string, boolean or number."""
    decoded = {}
    for def_key, value in definition.items():
        if value is None or not isinstance(value, SCALAR_TYPES):
            raise ConfigurationError(
                f"error decoding definition {def_key} value {value!r} "
                f"of policy {key} for vhost {vhost}"
            )
        decoded[def_key] = value
    return decoded


def desired_policies(spec: VhostSpec) -> Dict[str, Dict[str, Any]]:
    vhost = spec.vhost_name
    desired = {}
    for key, policy in spec.policies.items():
        name = policy_name(vhost, key)
        desired[name] = {
            "name": name,
            "vhost": vhost,
            "pattern": policy.pattern,
            "apply-to": policy.apply_to,
            "priority": policy.priority,
            "definition": decode_definition(key, policy.definition, vhost),
        }
    return desired


def same_policy(want: Dict[str, Any], have: Dict[str, Any]) -> bool:
    return (
        want["pattern"] == have.get("pattern")
        and want["apply-to"] == have.get("apply-to")
        and deep_equal(want["priority"], have.get("priority"))
        and deep_equal(want["definition"], have.get("definition") or {})
    )


class PoliciesComponent(Component):
    name = "policies"
    condition = POLICIES_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        client, _ = await cpass.connect()
        vhost = cpass.spec.vhost_name
        desired = desired_policies(cpass.spec)

        try:
            live = await client.list_policies_in(vhost)
        except ManagementAPIError as e:
            raise DependencyError(
                f"error fetching policies for vhost {vhost}: {e}"
            ) from e
        observed = index_by(live, key=lambda p: p["name"])

        changes = diff(desired, observed, same_policy)

        for name, policy in changes.create.items():
            await self._put(
                client, vhost, policy, f"creating policy {name} for vhost {vhost}"
            )
            await cpass.event(
                "PolicyCreated", f"RabbitMQ policy {name} for vhost {vhost} created"
            )
        for name, policy in changes.update.items():
            await self._put(
                client, vhost, policy, f"updating policy {name} for vhost {vhost}"
            )
            await cpass.event(
                "PolicyUpdated", f"RabbitMQ policy {name} for vhost {vhost} updated"
            )
        for name in changes.delete:
            response = await client.delete_policy(vhost, name)
            expect_status(response, {204}, f"deleting policy {name} for vhost {vhost}")
            await cpass.event(
                "PolicyDeleted", f"RabbitMQ policy {name} for vhost {vhost} deleted"
            )

        cpass.conditions.set_true(POLICIES_READY, "PoliciesSynced")
        return None

    async def _put(self, client, vhost: str, policy: Dict[str, Any], action: str) -> None:
        response = await client.put_policy(
            vhost,
            policy["name"],
            policy["pattern"],
            policy["definition"],
            priority=policy["priority"],
            apply_to=policy["apply-to"],
        )
        expect_status(response, PUT_POLICY_OK, action)
