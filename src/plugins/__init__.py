"""
Plugin system for the RabbitMQ operator.

Reconciler plugins own the convergence logic for one or more resource
kinds. The built-in RabbitMQ reconcilers live in
``plugins.reconcilers.rabbitmq``.
"""

from plugins.reconcilers.base import (
    ReconcilerPlugin,
    ReconcilerContext,
    ReconcileResult,
)
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "ReconcilerPlugin",
    "ReconcilerContext",
    "ReconcileResult",
    "PluginRegistry",
    "get_registry",
]
