"""
Watch mapping from vhosts back to users.

A user granted permissions on the ``*`` pseudo-vhost must be re-converged
whenever a vhost appears, so that the wildcard rule is applied to it. The
mapping is derived on demand by scanning users; nothing is stored.
"""

import logging
from typing import Any, Dict, Iterable, List, Tuple

from plugins.reconcilers.rabbitmq.models import ALL_VHOSTS, KIND_USER

logger = logging.getLogger(__name__)


def has_wildcard_permissions(resource: Dict[str, Any]) -> bool:
    for perm in (resource.get("spec") or {}).get("permissions") or []:
        if perm.get("vhost") == ALL_VHOSTS:
            return True
    return False


def users_with_wildcard_permissions(
    users: Iterable[Dict[str, Any]],
) -> List[Tuple[str, str, str]]:
    """
    Select the users that must be re-evaluated when a vhost appears.

    Args:
        users: RabbitUser resource dicts.

    Returns:
        ``(kind, namespace, name)`` keys of users with a ``*`` permission.
    """
    return [
        (KIND_USER, user["namespace"], user["name"])
        for user in users
        if has_wildcard_permissions(user)
    ]


async def map_vhost_to_users(event, ctx) -> List[Tuple[str, str, str]]:
    """Map a RabbitVhost event to every RabbitUser with wildcard permissions."""
    users = await ctx.list_resources(KIND_USER)
    requests = users_with_wildcard_permissions(users)
    if requests:
        logger.info(
            f"Vhost {event.namespace}/{event.name} changed, "
            f"re-evaluating {len(requests)} wildcard user(s)"
        )
    return requests
