"""
Reconcilers for the RabbitVhost, RabbitUser and RabbitQueue kinds.
"""

from typing import Dict, List

from plugins.reconcilers.rabbitmq.components import (
    CompanionUserComponent,
    CredentialsSecretComponent,
    PasswordComponent,
    PermissionsComponent,
    PoliciesComponent,
    QueueComponent,
    UserComponent,
    VhostComponent,
)
from plugins.reconcilers.rabbitmq.models import (
    KIND_QUEUE,
    KIND_USER,
    KIND_VHOST,
    QueueSpec,
    UserSpec,
    VhostSpec,
)
from plugins.reconcilers.rabbitmq.pipeline import Component, RabbitReconciler, WatchMapper
from plugins.reconcilers.rabbitmq.watch import map_vhost_to_users


class RabbitVhostReconciler(RabbitReconciler):
    kind = KIND_VHOST
    spec_model = VhostSpec

    def default_components(self) -> List[Component]:
        return [VhostComponent(), PoliciesComponent(), CompanionUserComponent()]

    def ready_conditions(self, spec: VhostSpec) -> List[str]:
        conditions = ["VhostReady", "PoliciesReady"]
        if not spec.skip_user:
            conditions.append("UserReady")
        return conditions


class RabbitUserReconciler(RabbitReconciler):
    kind = KIND_USER
    spec_model = UserSpec

    def default_components(self) -> List[Component]:
        return [
            PasswordComponent(),
            UserComponent(),
            PermissionsComponent(),
            CredentialsSecretComponent(),
        ]

    def ready_conditions(self, spec: UserSpec) -> List[str]:
        return ["UserReady", "PermissionsReady"]

    @property
    def watches(self) -> Dict[str, WatchMapper]:
        return {KIND_VHOST: map_vhost_to_users}


class RabbitQueueReconciler(RabbitReconciler):
    kind = KIND_QUEUE
    spec_model = QueueSpec

    def default_components(self) -> List[Component]:
        return [QueueComponent()]

    def ready_conditions(self, spec: QueueSpec) -> List[str]:
        return ["QueueReady"]
