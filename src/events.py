"""
Event Streaming - In-memory pub/sub for resource events.

The controller publishes an event whenever a resource is created, changed,
deleted or reconciled; the watch loop consumes them to re-trigger
reconcilers that depend on other kinds.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of resource events."""

    CREATED = "CREATED"
    DELETED = "DELETED"
    RECONCILED = "RECONCILED"


@dataclass
class ResourceEvent:
    """Event emitted when a resource changes."""

    event_type: EventType
    kind: str
    namespace: str
    name: str
    resource_id: Optional[int] = None
    resource_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind, self.namespace, self.name)

    @classmethod
    def from_resource(
        cls,
        event_type: EventType,
        resource: Dict[str, Any],
    ) -> "ResourceEvent":
        """
        Create an event from a resource dict.

        Args:
            event_type: The type of event.
            resource: Resource dict from the store.

        Returns:
            A new ResourceEvent instance.
        """
        return cls(
            event_type=event_type,
            kind=resource["kind"],
            namespace=resource.get("namespace", "default"),
            name=resource["name"],
            resource_id=resource.get("id"),
            resource_data=resource,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


class Subscription:
    """
    One subscriber's view of the bus.

    Iterating yields the events the subscriber asked for, in publish order,
    until the subscription is closed.
    """

    def __init__(
        self,
        maxsize: int,
        kinds: Optional[Iterable[str]] = None,
        event_types: Optional[Iterable[EventType]] = None,
    ):
        self.id = uuid.uuid4().hex
        self.kinds: Optional[FrozenSet[str]] = frozenset(kinds) if kinds else None
        self.event_types: Optional[FrozenSet[EventType]] = (
            frozenset(event_types) if event_types else None
        )
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def wants(self, event: ResourceEvent) -> bool:
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        return True

    def offer(self, event: Optional[ResourceEvent]) -> bool:
        """Queue an event without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def __aiter__(self) -> AsyncIterator[ResourceEvent]:
        return self

    async def __anext__(self) -> ResourceEvent:
        event = await self._queue.get()
        # None is the close marker
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    In-process fan-out of resource events.

    Publishing never blocks. A subscriber whose queue is full misses the
    event; the periodic resync reconciles anything a watch missed.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscriptions: Dict[str, Subscription] = {}

    async def publish(self, event: ResourceEvent) -> int:
        """Deliver an event to every interested subscriber. Returns the count."""
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.wants(event):
                continue
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    f"Dropped {event.event_type.value} event for {event.kind} "
                    f"{event.namespace}/{event.name}: subscriber "
                    f"{subscription.id} queue full"
                )
        return delivered

    async def subscribe(
        self,
        kinds: Optional[Iterable[str]] = None,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        """
        Start receiving events.

        Args:
            kinds: Only deliver events for these resource kinds. All kinds
                when omitted.
            event_types: Only deliver these event types. All types when
                omitted.
        """
        subscription = Subscription(self._queue_size, kinds, event_types)
        self._subscriptions[subscription.id] = subscription
        watching = ", ".join(sorted(subscription.kinds or [])) or "all kinds"
        logger.debug(f"Subscriber {subscription.id} watching {watching}")
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering to a subscription and end its iteration."""
        if self._subscriptions.pop(subscription.id, None) is None:
            return
        if not subscription.offer(None):
            logger.warning(f"Could not close subscriber {subscription.id}: queue full")

    def __len__(self) -> int:
        return len(self._subscriptions)
