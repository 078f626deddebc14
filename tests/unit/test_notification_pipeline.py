"""Unit tests for live notification subscriptions.

Tests delivery order, de-duplication, cancellation and how transient and
fatal store faults are surfaced.
"""

import asyncio
import logging
import time

import pytest

from staffsync.domain.enums import NotificationKind
from staffsync.domain.errors import AmbiguousIdentityError, OperationTimeoutError, PermissionDeniedError
from staffsync.domain.models import NotificationEvent
from staffsync.services.notification_pipeline import NotificationPipeline

from tests.fakes import utc

KEY_1 = "sk_0123456789abcdef0123456789ab"
ORPHAN_KEY = "sk_000000000000000000000orphan"
SHARED_KEY = "sk_1111111111111111111111shared"


def make_event(event_id, key=KEY_1, minute=0):
    return NotificationEvent(
        event_id=event_id,
        target_identity_key=key,
        kind=NotificationKind.SYSTEM,
        created_at=utc(2025, 1, 6, 9, minute),
    )


async def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def pipeline(synchronizer):
    return NotificationPipeline(synchronizer)


class TestDelivery:
    """Tests for event delivery."""

    @pytest.mark.asyncio
    async def test_backlog_and_new_events_delivered_in_order(self, pipeline, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await synchronizer.write_notification(make_event("E2", minute=2))
        await synchronizer.write_notification(make_event("E1", minute=1))

        received = []
        subscription = pipeline.subscribe(KEY_1, lambda events: received.extend(events))
        await wait_until(lambda: len(received) == 2)

        await synchronizer.write_notification(make_event("E3", minute=3))
        await wait_until(lambda: len(received) == 3)

        assert [e.event_id for e in received] == ["E1", "E2", "E3"]
        subscription()
        await subscription.wait_closed()

    @pytest.mark.asyncio
    async def test_event_never_delivered_twice(self, pipeline, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await synchronizer.write_notification(make_event("E1"))

        received = []
        subscription = pipeline.subscribe(KEY_1, lambda events: received.extend(events))
        await wait_until(lambda: len(received) == 1)

        # Several poll cycles over an unchanged stream
        await asyncio.sleep(0.3)
        subscription.cursor = None
        await asyncio.sleep(0.2)

        assert [e.event_id for e in received] == ["E1"]
        subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_async_callback(self, pipeline, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        received = []

        async def on_events(events):
            await asyncio.sleep(0)
            received.extend(events)

        subscription = pipeline.subscribe(KEY_1, on_events)
        await synchronizer.write_notification(make_event("E1"))
        await wait_until(lambda: len(received) == 1)

        subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_orphaned_events_not_delivered(self, pipeline, synchronizer):
        await synchronizer.write_notification(make_event("E1", key=ORPHAN_KEY))

        received = []
        subscription = pipeline.subscribe(ORPHAN_KEY, lambda events: received.extend(events))
        await asyncio.sleep(0.3)

        assert received == []
        assert subscription.is_active
        subscription.unsubscribe()


    @pytest.mark.asyncio
    async def test_backlog_pages_read_without_waiting(self, pipeline, synchronizer, create_staff, monkeypatch):
        from staffsync.config.settings import settings
        monkeypatch.setattr(settings, "notification_page_size", 2)
        monkeypatch.setattr(settings, "subscription_poll_interval_seconds", 30.0)
        await create_staff("S1", "a@x.com", key=KEY_1)
        for minute in range(5):
            await synchronizer.write_notification(make_event(f"E{minute}", minute=minute))

        batches = []
        subscription = pipeline.subscribe(KEY_1, lambda events: batches.append([e.event_id for e in events]))
        await wait_until(lambda: sum(len(b) for b in batches) == 5, timeout=2.0)

        assert batches == [["E0", "E1"], ["E2", "E3"], ["E4"]]
        subscription.unsubscribe()


class TestCancellation:
    """Tests for unsubscribe semantics."""

    @pytest.mark.asyncio
    async def test_no_callback_after_unsubscribe(self, pipeline, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        received = []
        subscription = pipeline.subscribe(KEY_1, lambda events: received.extend(events))
        await synchronizer.write_notification(make_event("E1"))
        await wait_until(lambda: len(received) == 1)

        subscription()
        await synchronizer.write_notification(make_event("E2", minute=1))
        await asyncio.sleep(0.3)

        assert [e.event_id for e in received] == ["E1"]
        assert not subscription.is_active
        assert pipeline.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_in_flight_callback_completes(self, pipeline, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        started = asyncio.Event()
        finished = []

        async def slow_callback(events):
            started.set()
            await asyncio.sleep(0.1)
            finished.extend(events)

        subscription = pipeline.subscribe(KEY_1, slow_callback)
        await synchronizer.write_notification(make_event("E1"))
        await asyncio.wait_for(started.wait(), timeout=2)

        subscription.unsubscribe()
        await subscription.wait_closed()

        assert [e.event_id for e in finished] == ["E1"]

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, pipeline, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        subscription = pipeline.subscribe(KEY_1, lambda events: None)

        subscription.unsubscribe()
        subscription.unsubscribe()
        await subscription.wait_closed()

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self, pipeline, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)
        pipeline.subscribe(KEY_1, lambda events: None)
        pipeline.subscribe(KEY_1, lambda events: None)
        assert pipeline.active_subscriptions == 2

        await pipeline.close()

        assert pipeline.active_subscriptions == 0


class TestFaults:
    """Tests for transient and fatal faults."""

    @pytest.mark.asyncio
    async def test_transient_faults_are_retried_silently(self, pipeline, synchronizer, create_staff, monkeypatch):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await synchronizer.write_notification(make_event("E1"))

        real_query = synchronizer.query_notifications_for
        failures = {"left": 2}

        async def flaky_query(*args, **kwargs):
            if failures["left"]:
                failures["left"] -= 1
                raise OperationTimeoutError("notifications.find_for_key did not complete")
            return await real_query(*args, **kwargs)

        monkeypatch.setattr(synchronizer, "query_notifications_for", flaky_query)

        received, errors = [], []
        subscription = pipeline.subscribe(KEY_1, received.extend, errors.append)
        await wait_until(lambda: len(received) == 1)

        assert errors == []
        assert failures["left"] == 0
        subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_fatal_fault_reported_once_and_ends_subscription(self, pipeline, synchronizer, monkeypatch):
        calls = {"count": 0}

        async def denied_query(*args, **kwargs):
            calls["count"] += 1
            raise PermissionDeniedError("No access to notifications")

        monkeypatch.setattr(synchronizer, "query_notifications_for", denied_query)

        errors = []
        subscription = pipeline.subscribe(KEY_1, lambda events: None, errors.append)
        await subscription.wait_closed()
        await asyncio.sleep(0.2)

        assert len(errors) == 1
        assert isinstance(errors[0], PermissionDeniedError)
        assert calls["count"] == 1
        assert not subscription.is_active
        assert pipeline.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_shared_key_reported_as_integrity_fault(self, pipeline, synchronizer, create_staff, caplog):
        await create_staff("S1", "a@x.com", key=SHARED_KEY)
        await create_staff("S2", "b@x.com", key=SHARED_KEY)

        received, errors = [], []
        with caplog.at_level(logging.WARNING):
            subscription = pipeline.subscribe(SHARED_KEY, received.extend, errors.append)
            await synchronizer.write_notification(make_event("E1", key=SHARED_KEY))
            await asyncio.wait_for(subscription.wait_closed(), timeout=2)

        assert received == []
        assert len(errors) == 1
        assert isinstance(errors[0], AmbiguousIdentityError)
        assert any(r.levelno == logging.ERROR and getattr(r, "alert", False) for r in caplog.records)
        assert not any("orphaned" in r.getMessage() for r in caplog.records)
