"""
Reconciler Plugin Base - Abstract interface for reconciler plugins.

Reconciler plugins own the convergence logic for one or more resource kinds.
They never talk to the object store directly: everything they need from it
goes through a ReconcilerContext, so the engine has no dependency on how
specs, secrets and status are stored.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from db import DatabaseManager
from events import EventBus, EventType, ResourceEvent

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result from a reconciler's reconcile() or finalize() call."""

    success: bool = False
    message: str = ""
    requeue_after: Optional[int] = None
    # Only meaningful when success is False
    retryable: bool = True
    # Not ready yet, but not an error either
    pending: bool = False


class ReconcilerContext(ABC):
    """
    Capabilities the operator provides to reconcilers.

    Resources are plain dicts with at least ``kind``, ``namespace``, ``name``,
    ``spec`` and ``conditions``. Secrets are maps of key to bytes.
    """

    @abstractmethod
    async def get_resource(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch one resource, or None if it does not exist."""

    @abstractmethod
    async def list_resources(
        self, kind: str, namespace: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List live resources of a kind, optionally within one namespace."""

    @abstractmethod
    async def apply_resource(
        self,
        kind: str,
        namespace: str,
        name: str,
        spec: Dict[str, Any],
        owner: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create or update a resource and return its current state."""

    @abstractmethod
    async def delete_resource(self, kind: str, namespace: str, name: str) -> None:
        """Mark a resource for deletion."""

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, bytes]]:
        """Fetch a secret's data, or None if the secret does not exist."""

    @abstractmethod
    async def put_secret(self, namespace: str, name: str, data: Dict[str, Any]) -> None:
        """Create or replace a secret. String values are stored UTF-8 encoded."""

    @abstractmethod
    async def emit_event(
        self, resource: Dict[str, Any], event_type: str, reason: str, message: str
    ) -> None:
        """Record a notification event against a resource."""

    @abstractmethod
    async def write_status(
        self,
        resource: Dict[str, Any],
        conditions: List[Dict[str, Any]],
    ) -> None:
        """Persist the conditions computed by a pass."""

    @abstractmethod
    async def request_reconcile(
        self, kind: str, namespace: str, name: str, after: int = 0
    ) -> None:
        """Ask for a resource to be reconciled again after ``after`` seconds."""


def _encode_secret(data: Dict[str, Any]) -> Dict[str, str]:
    encoded = {}
    for key, value in data.items():
        if isinstance(value, str):
            value = value.encode("utf-8")
        encoded[key] = base64.b64encode(value).decode("ascii")
    return encoded


def _decode_secret(data: Dict[str, str]) -> Dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in data.items()}


class DatabaseReconcilerContext(ReconcilerContext):
    """ReconcilerContext backed by the operator's PostgreSQL store."""

    def __init__(self, db: DatabaseManager, event_bus: Optional[EventBus] = None):
        self.db = db
        self.event_bus = event_bus

    async def _publish(self, event_type: EventType, resource: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(
                ResourceEvent.from_resource(event_type, resource)
            )

    async def get_resource(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        return await self.db.get_resource_by_name(kind, namespace, name)

    async def list_resources(
        self, kind: str, namespace: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return await self.db.list_resources(kind=kind, namespace=namespace)

    async def apply_resource(
        self,
        kind: str,
        namespace: str,
        name: str,
        spec: Dict[str, Any],
        owner: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        owner_id = owner["id"] if owner else None
        resource, created = await self.db.apply_resource(
            kind, namespace, name, spec, owner_id=owner_id
        )
        if created:
            await self._publish(EventType.CREATED, resource)
        return resource

    async def delete_resource(self, kind: str, namespace: str, name: str) -> None:
        resource = await self.db.get_resource_by_name(kind, namespace, name)
        if resource is None:
            return
        await self.db.delete_resource(resource["id"])
        await self._publish(EventType.DELETED, resource)

    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, bytes]]:
        data = await self.db.get_secret(namespace, name)
        if data is None:
            return None
        return _decode_secret(data)

    async def put_secret(self, namespace: str, name: str, data: Dict[str, Any]) -> None:
        await self.db.put_secret(namespace, name, _encode_secret(data))

    async def emit_event(
        self, resource: Dict[str, Any], event_type: str, reason: str, message: str
    ) -> None:
        await self.db.record_event(resource["id"], event_type, reason, message)

    async def write_status(
        self,
        resource: Dict[str, Any],
        conditions: List[Dict[str, Any]],
    ) -> None:
        await self.db.update_resource_conditions(resource["id"], conditions)

    async def request_reconcile(
        self, kind: str, namespace: str, name: str, after: int = 0
    ) -> None:
        await self.db.mark_resource_for_reconciliation(kind, namespace, name, delay=after)


class ReconcilerPlugin(ABC):
    """
    Abstract base class for reconciler plugins.

    The controller calls ``reconcile`` for live resources of the kinds in
    ``resource_types`` and ``finalize`` for resources marked for deletion.

    Reconcilers are discovered via Python entry points in the
    'rabbitmq_operator.reconcilers' group.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this reconciler."""
        pass

    @property
    @abstractmethod
    def resource_types(self) -> List[str]:
        """Resource kinds this reconciler handles."""
        pass

    @property
    def watches(self) -> Dict[str, Callable]:
        """
        Other kinds whose changes should re-trigger this reconciler.

        Maps a kind to an async ``mapper(event, ctx)`` returning the
        ``(kind, namespace, name)`` keys to reconcile.
        """
        return {}

    @abstractmethod
    async def start(self, ctx: ReconcilerContext) -> None:
        """
        Prepare the reconciler before the controller starts dispatching.

        Args:
            ctx: ReconcilerContext providing access to resources and status.
        """
        pass

    @abstractmethod
    async def reconcile(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        """
        Converge a single resource.

        Compare desired state against actual state and take action.
        Report conditions back via ctx.write_status().

        Args:
            resource: The resource dict from the store.
            ctx: ReconcilerContext for secrets, events and status.

        Returns:
            ReconcileResult indicating the outcome of the pass.
        """
        pass

    async def finalize(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        """Clean up external state for a resource being deleted."""
        return ReconcileResult(success=True)

    @abstractmethod
    async def stop(self) -> None:
        """Graceful shutdown. Clean up any resources."""
        pass
