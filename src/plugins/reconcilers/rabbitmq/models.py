"""
Desired-state models for the RabbitMQ resource kinds.

Specs are stored with camelCase keys; the models accept either the alias or
the field name.
"""

from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

KIND_VHOST = "RabbitVhost"
KIND_USER = "RabbitUser"
KIND_QUEUE = "RabbitQueue"

ALL_VHOSTS = "*"
ROOT_VHOST = "/"


class _SpecModel(BaseModel):
    model_config = {"populate_by_name": True}


class SecretRef(_SpecModel):
    """Reference to a key inside a secret in the resource's namespace."""

    name: str = Field(..., description="Name of the secret")
    key: str = Field("password", description="Key within the secret")


class ConnectionSpec(_SpecModel):
    """How to reach the broker's management API. Blank fields use defaults."""

    protocol: str = ""
    host: str = ""
    port: int = 0
    username: str = ""
    password_secret_ref: Optional[SecretRef] = Field(None, alias="passwordSecretRef")
    vhost: str = ""
    insecure_skip_verify: Optional[bool] = Field(None, alias="insecureSkipVerify")


class PermissionEntry(_SpecModel):
    """Configure/write/read regular expressions for one vhost."""

    vhost: str
    configure: str = ""
    write: str = ""
    read: str = ""

    def same_rules(self, observed: Dict[str, Any]) -> bool:
        return (
            observed.get("configure") == self.configure
            and observed.get("write") == self.write
            and observed.get("read") == self.read
        )


class UserSpec(_SpecModel):
    username: str = ""
    tags: str = Field("", description="Comma separated list of user tags")
    permissions: List[PermissionEntry] = Field(default_factory=list)
    output_vhost: bool = Field(False, alias="outputVhost")
    connection: ConnectionSpec = Field(default_factory=ConnectionSpec)

    def apply_defaults(self, object_name: str) -> "UserSpec":
        if not self.username:
            self.username = object_name
        return self

    def tag_set(self) -> Set[str]:
        return split_tags(self.tags)


class PolicySpec(_SpecModel):
    pattern: str
    apply_to: str = Field("all", alias="applyTo")
    priority: int = 0
    definition: Dict[str, Any] = Field(default_factory=dict)


class VhostSpec(_SpecModel):
    vhost_name: str = Field("", alias="vhostName")
    skip_user: bool = Field(False, alias="skipUser")
    policies: Dict[str, PolicySpec] = Field(default_factory=dict)
    connection: ConnectionSpec = Field(default_factory=ConnectionSpec)

    def apply_defaults(self, object_name: str) -> "VhostSpec":
        if not self.vhost_name:
            self.vhost_name = object_name
        return self


class QueueSpec(_SpecModel):
    queue_name: str = Field("", alias="queueName")
    vhost: str
    durable: Optional[bool] = None
    auto_delete: Optional[bool] = Field(None, alias="autoDelete")
    arguments: Optional[Dict[str, Any]] = None
    connection: ConnectionSpec = Field(default_factory=ConnectionSpec)

    def apply_defaults(self, object_name: str) -> "QueueSpec":
        if not self.queue_name:
            self.queue_name = object_name
        return self


def split_tags(tags: Any) -> Set[str]:
    """
    Normalize a tag value to a set.

    Accepts the comma-joined string form and the list form newer brokers
    return.
    """
    if not tags:
        return set()
    if isinstance(tags, str):
        tags = tags.split(",")
    return {t.strip() for t in tags if t and t.strip()}
