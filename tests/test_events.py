"""Unit tests for events.py - resource events and the in-memory bus."""

import asyncio
from datetime import datetime

import pytest

from events import (
    EventBus,
    EventType,
    ResourceEvent,
    Subscription,
)


def make_event(event_type=EventType.CREATED, name="testing", kind="RabbitVhost"):
    return ResourceEvent(
        event_type=event_type,
        kind=kind,
        namespace="default",
        name=name,
        resource_id=1,
        timestamp="2024-01-15T10:30:00Z",
    )


class TestEventType:
    """Tests for the EventType enum."""

    def test_all_members(self):
        assert {e.value for e in EventType} == {
            "CREATED",
            "DELETED",
            "RECONCILED",
        }


class TestResourceEvent:
    """Tests for ResourceEvent."""

    def test_key(self):
        assert make_event().key == ("RabbitVhost", "default", "testing")

    def test_from_resource(self, sample_resource):
        event = ResourceEvent.from_resource(EventType.CREATED, sample_resource)

        assert event.event_type == EventType.CREATED
        assert event.kind == "RabbitVhost"
        assert event.namespace == "default"
        assert event.name == "testing"
        assert event.resource_id == 1
        assert event.resource_data is sample_resource

    def test_from_resource_default_namespace(self):
        event = ResourceEvent.from_resource(
            EventType.DELETED, {"kind": "RabbitUser", "name": "app"}
        )
        assert event.namespace == "default"
        assert event.resource_id is None

    def test_from_resource_timestamp_iso8601(self, sample_resource):
        event = ResourceEvent.from_resource(EventType.CREATED, sample_resource)
        parsed = datetime.fromisoformat(event.timestamp)
        assert parsed.tzinfo is not None


class TestSubscription:
    """Tests for subscription filtering and iteration."""

    def test_wants_everything_by_default(self):
        sub = Subscription(maxsize=4)
        assert sub.wants(make_event(kind="RabbitUser"))
        assert sub.wants(make_event(EventType.RECONCILED))

    def test_kind_and_type_filters(self):
        sub = Subscription(
            maxsize=4, kinds=["RabbitVhost"], event_types=[EventType.RECONCILED]
        )
        assert sub.wants(make_event(EventType.RECONCILED))
        assert not sub.wants(make_event(EventType.CREATED))
        assert not sub.wants(make_event(EventType.RECONCILED, kind="RabbitUser"))

    def test_offer_counts_drops(self):
        sub = Subscription(maxsize=1)
        assert sub.offer(make_event(name="a")) is True
        assert sub.offer(make_event(name="b")) is False
        assert sub.dropped == 1

    @pytest.mark.asyncio
    async def test_iteration_stops_at_close_marker(self):
        sub = Subscription(maxsize=4)
        event = make_event()
        sub.offer(event)
        sub.offer(None)

        received = [e async for e in sub]

        assert received == [event]


@pytest.mark.asyncio
class TestEventBus:
    """Tests for the EventBus pub/sub system."""

    @pytest.fixture
    def bus(self):
        return EventBus(queue_size=16)

    async def test_publish_no_subscribers(self, bus):
        """Publishing with no subscribers does not raise."""
        assert await bus.publish(make_event()) == 0

    async def test_multiple_subscribers_all_receive(self, bus):
        event = make_event()
        sub1 = await bus.subscribe()
        sub2 = await bus.subscribe()

        assert await bus.publish(event) == 2

        assert await asyncio.wait_for(sub1.__anext__(), timeout=1.0) is event
        assert await asyncio.wait_for(sub2.__anext__(), timeout=1.0) is event

    async def test_kind_scoped_subscription(self, bus):
        sub = await bus.subscribe(kinds=["RabbitVhost"])

        assert await bus.publish(make_event(kind="RabbitUser", name="app")) == 0
        await bus.publish(make_event(kind="RabbitVhost", name="jobs"))

        received = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
        assert received.key == ("RabbitVhost", "default", "jobs")

    async def test_event_type_scoped_subscription(self, bus):
        sub = await bus.subscribe(event_types=[EventType.DELETED])

        await bus.publish(make_event(EventType.CREATED, name="r1"))
        await bus.publish(make_event(EventType.DELETED, name="r2"))

        received = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
        assert received.name == "r2"

    async def test_unsubscribe_ends_iteration(self, bus):
        sub = await bus.subscribe()
        await bus.unsubscribe(sub)

        received = [e async for e in sub]

        assert received == []
        assert len(bus) == 0

    async def test_unsubscribe_twice_is_noop(self, bus):
        sub = await bus.subscribe()
        await bus.unsubscribe(sub)
        await bus.unsubscribe(sub)
        assert len(bus) == 0

    async def test_full_queue_drops_event(self):
        bus = EventBus(queue_size=1)
        sub = await bus.subscribe()
        first, second = make_event(name="a"), make_event(name="b")

        assert await bus.publish(first) == 1
        assert await bus.publish(second) == 0

        assert await asyncio.wait_for(sub.__anext__(), timeout=1.0) is first
        assert sub.dropped == 1
