"""
RabbitMQ reconcilers.

Converge vhosts, users, permissions, policies and queues on a RabbitMQ
broker through its management HTTP API.
"""

from plugins.reconcilers.rabbitmq.reconcilers import (
    RabbitQueueReconciler,
    RabbitUserReconciler,
    RabbitVhostReconciler,
)


def builtin_reconcilers():
    """Instantiate the reconcilers shipped with the operator."""
    return [RabbitVhostReconciler(), RabbitUserReconciler(), RabbitQueueReconciler()]


__all__ = [
    "RabbitQueueReconciler",
    "RabbitUserReconciler",
    "RabbitVhostReconciler",
    "builtin_reconcilers",
]
