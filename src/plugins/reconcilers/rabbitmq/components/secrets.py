"""
Generated password and the credentials secret handed to consumers.

Both live in the secret ``<name>-rabbituser``. The password is generated
once and reused on every later pass; the remaining keys are rewritten
only when their values change.
"""

import logging
from typing import Dict, Optional

from plugins.reconcilers.rabbitmq.passwords import generate_password
from plugins.reconcilers.rabbitmq.pipeline import (
    Component,
    ComponentResult,
    ConvergencePass,
)

logger = logging.getLogger(__name__)

PASSWORD_KEY = "RABBIT_PASSWORD"
HOST_KEY = "RABBIT_HOST"
USERNAME_KEY = "RABBIT_USERNAME"
URL_KEY = "RABBIT_URL"
URL_VHOST_KEY = "RABBIT_URL_VHOST"


def credentials_secret_name(resource_name: str) -> str:
    return f"{resource_name}-rabbituser"


def _decode(secret: Optional[Dict[str, bytes]]) -> Dict[str, str]:
    return {
        k: v.decode("utf-8") if isinstance(v, bytes) else v
        for k, v in (secret or {}).items()
    }


class PasswordComponent(Component):
    """Load the user's password from its secret, generating it on first use."""

    name = "password"

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        secret_name = credentials_secret_name(cpass.name)
        existing = _decode(await cpass.ctx.get_secret(cpass.namespace, secret_name))

        password = existing.get(PASSWORD_KEY)
        if not password:
            password = generate_password()
            existing[PASSWORD_KEY] = password
            await cpass.ctx.put_secret(cpass.namespace, secret_name, existing)
            logger.info(f"Generated password for {cpass.namespace}/{cpass.name}")

        cpass.data["password"] = password
        return None


def credentials_data(cpass: ConvergencePass) -> Dict[str, str]:
    uri = cpass.data["uri"]
    vhost = cpass.data.get("vhost")

    host = uri.host
    if vhost and cpass.spec.output_vhost:
        host = f"{host}{vhost}"

    data = {
        HOST_KEY: host,
        USERNAME_KEY: cpass.data["username"],
        PASSWORD_KEY: cpass.data["password"],
        URL_KEY: str(uri),
    }
    if vhost:
        data[URL_VHOST_KEY] = f"{uri}{vhost}"
    return data


class CredentialsSecretComponent(Component):
    """Publish connection details for the converged user."""

    name = "credentials"

    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        secret_name = credentials_secret_name(cpass.name)
        desired = credentials_data(cpass)

        existing = _decode(await cpass.ctx.get_secret(cpass.namespace, secret_name))
        if existing != desired:
            await cpass.ctx.put_secret(cpass.namespace, secret_name, desired)
            logger.info(f"Wrote credentials secret {cpass.namespace}/{secret_name}")
        return None
