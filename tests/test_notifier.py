"""Tests for the change notifier."""
import asyncio
import json
import threading

import pytest

from ticketflow_core.notifier import (
    ChangeEvent,
    ChangeKind,
    ChangeNotifier,
    SubscriptionClosed,
)


class TestPublish:
    """Test fan-out semantics."""

    def test_publish_without_subscribers(self):
        """Test that publishing to nobody is a no-op."""
        assert ChangeNotifier().publish(ChangeKind.TICKET_CREATED, {"id": "t1"}) == 0

    def test_every_subscriber_receives(self):
        """Test that all current subscribers get the event."""
        notifier = ChangeNotifier()
        first, second = notifier.subscribe(), notifier.subscribe()

        assert notifier.publish(ChangeKind.TICKET_UPDATED, {"id": "t1"}) == 2
        assert first.get(timeout=0).payload == {"id": "t1"}
        assert second.get(timeout=0).kind == ChangeKind.TICKET_UPDATED

    def test_late_subscriber_gets_nothing(self):
        """Test that events are not replayed to later subscribers."""
        notifier = ChangeNotifier()
        notifier.subscribe()
        notifier.publish(ChangeKind.TICKET_CREATED, {"id": "t1"})

        late = notifier.subscribe()
        assert late.get(timeout=0) is None

    def test_kind_accepts_string(self):
        """Test that the wire name can be used as kind."""
        notifier = ChangeNotifier()
        subscription = notifier.subscribe()
        notifier.publish("comment:created", {"ticket_id": "t1"})
        assert subscription.get(timeout=0).kind == ChangeKind.COMMENT_CREATED

    def test_unknown_kind_is_ignored(self):
        """Test that an unknown kind is logged and never raises."""
        notifier = ChangeNotifier()
        subscription = notifier.subscribe()

        assert notifier.publish("ticket:deleted", {"id": "t1"}) == 0
        assert subscription.get(timeout=0) is None
        assert notifier.subscriber_count == 1


class TestAwaitingSubscription:
    """Test subscriptions awaited on an event loop."""

    def test_next_event_returns_queued_event(self):
        """Test that an already queued event is returned without waiting."""
        notifier = ChangeNotifier()

        async def run():
            subscription = notifier.subscribe(loop=asyncio.get_running_loop())
            notifier.publish(ChangeKind.TICKET_CREATED, {"id": "t1"})
            return await subscription.next_event(5.0)

        assert asyncio.run(run()).payload == {"id": "t1"}

    def test_next_event_times_out(self):
        """Test that an idle subscription yields None after the timeout."""
        notifier = ChangeNotifier()

        async def run():
            subscription = notifier.subscribe(loop=asyncio.get_running_loop())
            return await subscription.next_event(0.01)

        assert asyncio.run(run()) is None

    def test_publish_from_thread_wakes_waiter(self):
        """Test that a publish on another thread wakes the awaiting loop."""
        notifier = ChangeNotifier()

        async def run():
            subscription = notifier.subscribe(loop=asyncio.get_running_loop())
            waiter = asyncio.ensure_future(subscription.next_event(5.0))
            await asyncio.sleep(0.01)
            publisher = threading.Thread(target=notifier.publish, args=("ticket:updated", {"id": "t2"}))
            publisher.start()
            event = await asyncio.wait_for(waiter, 2.0)
            publisher.join()
            return event

        assert asyncio.run(run()).kind == ChangeKind.TICKET_UPDATED

    def test_close_wakes_waiter(self):
        """Test that unsubscribing ends a pending wait."""
        notifier = ChangeNotifier()

        async def run():
            subscription = notifier.subscribe(loop=asyncio.get_running_loop())
            waiter = asyncio.ensure_future(subscription.next_event(5.0))
            await asyncio.sleep(0.01)
            notifier.unsubscribe(subscription)
            return await asyncio.wait_for(waiter, 2.0), subscription.closed

        event, closed = asyncio.run(run())
        assert event is None
        assert closed

    def test_unbound_subscription_cannot_be_awaited(self):
        """Test that next_event needs a loop-bound subscription."""
        subscription = ChangeNotifier().subscribe()
        with pytest.raises(RuntimeError):
            asyncio.run(subscription.next_event(0.01))


class TestDroppedSubscribers:
    """Test that failing subscribers never reach the publisher."""

    def test_full_subscriber_dropped(self):
        """Test that a subscriber whose queue is full is removed."""
        notifier = ChangeNotifier(max_pending=1)
        slow = notifier.subscribe()
        fast = notifier.subscribe()

        notifier.publish(ChangeKind.TICKET_CREATED, {"n": 1})
        fast.get(timeout=0)
        delivered = notifier.publish(ChangeKind.TICKET_CREATED, {"n": 2})

        assert delivered == 1
        assert notifier.subscriber_count == 1
        assert slow.closed
        assert fast.get(timeout=0).payload == {"n": 2}

    def test_closed_subscriber_dropped(self):
        """Test that a subscription closed behind the notifier's back is removed on publish."""
        notifier = ChangeNotifier()
        subscription = notifier.subscribe()
        subscription.close()

        assert notifier.publish(ChangeKind.TICKET_CREATED, {}) == 0
        assert notifier.subscriber_count == 0

    def test_deliver_after_close_raises(self):
        """Test that a closed subscription refuses new events."""
        subscription = ChangeNotifier().subscribe()
        subscription.close()
        with pytest.raises(SubscriptionClosed):
            subscription.deliver(ChangeEvent(ChangeKind.TICKET_CREATED))

    def test_unsubscribe_twice(self):
        """Test that unsubscribe is idempotent."""
        notifier = ChangeNotifier()
        subscription = notifier.subscribe()
        notifier.unsubscribe(subscription)
        notifier.unsubscribe(subscription)
        assert notifier.subscriber_count == 0

    def test_concurrent_subscribe_and_publish(self):
        """Test that publishing while others subscribe and leave never raises."""
        notifier = ChangeNotifier(max_pending=1000)
        errors = []

        def churn():
            try:
                for _ in range(200):
                    notifier.unsubscribe(notifier.subscribe())
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=churn) for _ in range(4)]
        for thread in threads:
            thread.start()
        for n in range(200):
            notifier.publish(ChangeKind.TICKET_UPDATED, {"n": n})
        for thread in threads:
            thread.join()

        assert errors == []
        assert notifier.subscriber_count == 0


class TestChangeEvent:
    """Test SSE rendering."""

    def test_to_sse(self):
        """Test that an event renders as a named SSE frame."""
        frame = ChangeEvent(ChangeKind.TICKET_CREATED, {"id": "t1"}).to_sse()

        assert frame.startswith("event: ticket:created\n")
        assert frame.endswith("\n\n")
        data_line = frame.splitlines()[1]
        assert json.loads(data_line[len("data: "):]) == {"id": "t1"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
