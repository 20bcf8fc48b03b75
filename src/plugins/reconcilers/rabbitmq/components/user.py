"""
User upsert.

The user is written when missing, when its tags differ, or when the stored
digest no longer verifies against the desired password. Every write uses a
freshly salted digest. A newly created user is not usable until the broker
has propagated it, so creation ends the pass early with a delayed re-run.
"""

import logging
from typing import Optional

from errors import DependencyError, ManagementAPIError
from plugins.reconcilers.rabbitmq.client import expect_status
from plugins.reconcilers.rabbitmq.models import (
    ALL_VHOSTS,
    ROOT_VHOST,
    UserSpec,
    split_tags,
)
from plugins.reconcilers.rabbitmq.passwords import (
    DEFAULT_HASH_ALGORITHM,
    hash_password,
    verify_password,
)
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

USER_READY = "UserReady"
SETTLE_DELAY = 10  # seconds

PUT_USER_OK = {200, 201, 204}


def vhost_path(vhost: str) -> str:
    """Render a vhost as a URI path suffix."""
    return vhost if vhost == ROOT_VHOST else f"/{vhost}"


class UserComponent(Component):
    name = "user"
    condition = USER_READY

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        client, uri = await cpass.connect()
        spec: UserSpec = cpass.spec
        username = spec.username

        password = cpass.data.get("password")
        if password is None:
            raise DependencyError(f"password for user {username} not set")

        create = update = False
        try:
            observed = await client.get_user(username)
        except ManagementAPIError as e:
            if not e.not_found:
                raise DependencyError(f"error getting user {username}: {e}") from e
            create = True
        else:
            if split_tags(observed.get("tags")) != spec.tag_set():
                update = True
            algorithm = observed.get("hashing_algorithm") or DEFAULT_HASH_ALGORITHM
            stored_hash = observed.get("password_hash", "")
            if not verify_password(password, stored_hash, algorithm):
                update = True

        if create or update:
            response = await client.put_user(
                username,
                hash_password(password, DEFAULT_HASH_ALGORITHM),
                DEFAULT_HASH_ALGORITHM,
                ",".join(sorted(spec.tag_set())),
            )
            expect_status(response, PUT_USER_OK, f"putting user {username}")

            if create:
                await cpass.event("UserCreated", f"RabbitMQ user {username} created")
                cpass.conditions.set_false(
                    USER_READY,
                    "UserPending",
                    f"RabbitMQ user {username} has been created",
                )
                return ComponentResult(requeue_after=SETTLE_DELAY, skip_remaining=True)
            await cpass.event("UserUpdated", f"RabbitMQ user {username} updated")

        cpass.data["uri"] = uri.for_user(username, password)
        cpass.data["username"] = username
        concrete = [p for p in spec.permissions if p.vhost != ALL_VHOSTS]
        if len(spec.permissions) == 1 and concrete:
            cpass.data["vhost"] = vhost_path(concrete[0].vhost)

        cpass.conditions.set_true(
            USER_READY, "UserExists", f"RabbitMQ user {username} exists"
        )
        return None

    async def finalize(self, cpass: ConvergencePass) -> None:
        client, _ = await cpass.connect()
        username = cpass.spec.username
        response = await client.delete_user(username)
        if response.status == 404:
            logger.info(f"User {username} already gone")
            return
        expect_status(response, {204}, f"deleting user {username}")
        logger.info(f"Deleted RabbitMQ user {username}")
