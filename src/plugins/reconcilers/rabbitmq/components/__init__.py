"""Pipeline components for the RabbitMQ reconcilers."""

from plugins.reconcilers.rabbitmq.components.companion import CompanionUserComponent
from plugins.reconcilers.rabbitmq.components.permissions import PermissionsComponent
from plugins.reconcilers.rabbitmq.components.policies import PoliciesComponent
from plugins.reconcilers.rabbitmq.components.queue import QueueComponent
from plugins.reconcilers.rabbitmq.components.secrets import (
    CredentialsSecretComponent,
    PasswordComponent,
)
from plugins.reconcilers.rabbitmq.components.user import UserComponent
from plugins.reconcilers.rabbitmq.components.vhost import VhostComponent

__all__ = [
    "CompanionUserComponent",
    "CredentialsSecretComponent",
    "PasswordComponent",
    "PermissionsComponent",
    "PoliciesComponent",
    "QueueComponent",
    "UserComponent",
    "VhostComponent",
]
