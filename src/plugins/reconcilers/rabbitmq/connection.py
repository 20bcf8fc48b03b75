"""
Connection resolution.

Turns a resource's ``connection`` block into a management API client plus
the canonical broker URI, filling blank fields from the process-wide
``DEFAULT_CONNECTION``.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple
from urllib.parse import quote

from config import DefaultConnection, get_default_connection
from errors import ConfigurationError, DependencyError
from plugins.reconcilers.rabbitmq.client import AdminClient
from plugins.reconcilers.rabbitmq.models import ConnectionSpec

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "amqp"

# The management API speaks HTTP whatever protocol the connection names
MANAGEMENT_SCHEMES = {"amqp": "http", "amqps": "https"}

# And the credentials handed to consumers always name an AMQP endpoint
AMQP_SCHEMES = {"http": "amqp", "https": "amqps"}

ClientFactory = Callable[..., AdminClient]


@dataclass
class BrokerURI:
    """A resolved broker address with credentials."""

    scheme: str
    host: str
    port: int = 0
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def netloc(self) -> str:
        return f"{self.host}:{self.port}" if self.port else self.host

    def __str__(self) -> str:
        user = quote(self.username, safe="")
        password = quote(self.password, safe="")
        return f"{self.scheme}://{user}:{password}@{self.netloc}"

    def management_url(self) -> str:
        scheme = MANAGEMENT_SCHEMES.get(self.scheme, self.scheme)
        return f"{scheme}://{self.netloc}"

    def for_user(self, username: str, password: str) -> "BrokerURI":
        """
        Build the AMQP URI a consumer should use to log in as ``username``.

        The port is dropped so clients use the protocol default.
        """
        return BrokerURI(
            scheme=AMQP_SCHEMES.get(self.scheme, self.scheme),
            host=self.host,
            username=username,
            password=password,
        )


async def resolve_connection(
    spec: ConnectionSpec,
    namespace: str,
    ctx,
    defaults: Optional[DefaultConnection] = None,
    client_factory: ClientFactory = AdminClient,
) -> Tuple[AdminClient, BrokerURI]:
    """
    Resolve a connection spec into a client and a broker URI.

    Each field takes the explicit spec value, then the default connection's
    value. Protocol finally falls back to ``amqp``; host and username have no
    fallback. The password comes from the referenced secret when one is
    named, otherwise from the default connection. An empty password is
    allowed.

    Args:
        spec: The resource's connection block.
        namespace: Namespace used for secret lookups.
        ctx: A ReconcilerContext providing ``get_secret``.
        defaults: Override for the process-wide defaults.
        client_factory: Callable building the client, replaceable in tests.

    Raises:
        ConfigurationError: If host or username is blank after defaulting.
        DependencyError: If the password secret or its key is missing.
    """
    if defaults is None:
        defaults = get_default_connection()

    protocol = spec.protocol or defaults.scheme or DEFAULT_PROTOCOL

    host = spec.host or defaults.host
    if not host:
        raise ConfigurationError("host is required")

    # 0 means unset and is left out of the URI
    port = spec.port or defaults.port or 0

    username = spec.username or defaults.username
    if not username:
        raise ConfigurationError("username is required")

    if spec.password_secret_ref is not None:
        password = await _password_from_secret(spec, namespace, ctx)
    else:
        password = defaults.password or ""

    if spec.insecure_skip_verify is not None:
        insecure = spec.insecure_skip_verify
    elif defaults.insecure_skip_verify is not None:
        insecure = defaults.insecure_skip_verify
    else:
        insecure = False

    uri = BrokerURI(
        scheme=protocol, host=host, port=port, username=username, password=password
    )
    client = client_factory(
        uri.management_url(), username, password, verify_ssl=not insecure
    )
    logger.debug(f"Resolved connection to {uri.management_url()} as {username}")
    return client, uri


async def _password_from_secret(spec: ConnectionSpec, namespace: str, ctx) -> str:
    ref = spec.password_secret_ref
    key = ref.key or "password"

    secret = await ctx.get_secret(namespace, ref.name)
    if secret is None:
        raise DependencyError(
            f"error getting password secret {namespace}/{ref.name}: not found"
        )
    if key not in secret:
        raise DependencyError(
            f"key {key} not found in password secret {namespace}/{ref.name}"
        )

    value = secret[key]
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return value
