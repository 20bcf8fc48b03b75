"""
Reconciler plugins package.

Reconciler plugins own the convergence logic for one or more resource kinds.
Third-party reconcilers are discovered via Python entry points
(group: 'rabbitmq_operator.reconcilers').
"""

from plugins.reconcilers.base import (
    ReconcilerPlugin,
    ReconcilerContext,
    ReconcileResult,
)

__all__ = ["ReconcilerPlugin", "ReconcilerContext", "ReconcileResult"]
