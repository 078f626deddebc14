"""Notification Delivery Pipeline - Live per-identity notification subscriptions

Each subscription is one asyncio task. It waits for a local write signal or
the poll interval, reads everything after its cursor, drops events it has
already delivered or whose target no longer maps to an active staff record,
and hands the rest to the subscriber's callback.
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from ..config.settings import settings
from ..domain.errors import OperationTimeoutError
from ..domain.models import NotificationCursor, NotificationEvent
from ..utils.logger import get_logger
from ..utils.retry import TRANSIENT_ERRORS
from .collection_synchronizer import CollectionSynchronizer
from .identity_resolver import IdentityResolver

logger = get_logger(__name__)

EventsCallback = Callable[[List[NotificationEvent]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]

TRANSIENT_DELIVERY_ERRORS = (OperationTimeoutError,) + TRANSIENT_ERRORS


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """
    Handle for one live subscription

    Calling the handle (or ``unsubscribe()``) stops delivery: no callback
    starts after it returns. A callback already running is allowed to finish.
    """

    def __init__(
        self,
        pipeline: "NotificationPipeline",
        identity_key: str,
        on_events: EventsCallback,
        on_error: Optional[ErrorCallback] = None,
        since_cursor: Optional[NotificationCursor] = None,
    ):
        self.pipeline = pipeline
        self.identity_key = identity_key
        self.on_events = on_events
        self.on_error = on_error
        self.cursor = since_cursor
        self.delivered_ids: Set[str] = set()
        self.cancelled = False
        self._delivering = False
        self._wake = pipeline.synchronizer.add_listener(identity_key)
        self._task: Optional[asyncio.Task] = None

    def __call__(self) -> None:
        self.unsubscribe()

    @property
    def is_active(self) -> bool:
        return not self.cancelled and self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(
            self._run(), name=f"notifications:{self.identity_key}"
        )

    def unsubscribe(self) -> None:
        """Stop delivery; idempotent"""
        if self.cancelled:
            return
        self.cancelled = True
        self._release()

        # Let an in-flight callback finish; the loop exits right after it
        if self._task is not None and not self._task.done() and not self._delivering:
            self._task.cancel()

        logger.info("Notification subscription closed", extra={"identity_key": self.identity_key})

    async def wait_closed(self) -> None:
        """Wait for the subscription task to finish"""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def _release(self) -> None:
        self.pipeline.synchronizer.remove_listener(self.identity_key, self._wake)
        self.pipeline._subscriptions.discard(self)

    async def _run(self) -> None:
        backoff = settings.subscription_poll_interval_seconds
        skip_wait = True

        try:
            while not self.cancelled:
                if not skip_wait:
                    await self._wait(backoff)
                skip_wait = False
                if self.cancelled:
                    break

                try:
                    skip_wait = await self._poll_once()
                except TRANSIENT_DELIVERY_ERRORS as e:
                    backoff = min(
                        max(backoff, settings.subscription_poll_interval_seconds) * 2,
                        settings.subscription_max_backoff_seconds,
                    )
                    logger.warning(
                        f"Notification read failed, backing off {backoff:.1f}s: {e!r}",
                        extra={"identity_key": self.identity_key}
                    )
                    continue

                backoff = settings.subscription_poll_interval_seconds
        except Exception as e:
            await self._fail(e)
        finally:
            self.cancelled = True
            self._release()

    async def _wait(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def _poll_once(self) -> bool:
        """Deliver one page; True when the page was full and more may follow"""
        page_size = settings.notification_page_size
        events = await self.pipeline.synchronizer.query_notifications_for(
            self.identity_key, since_cursor=self.cursor, limit=page_size
        )
        full_page = len(events) >= page_size

        fresh: List[NotificationEvent] = []
        for event in events:
            self.cursor = NotificationCursor.after(event)
            if event.event_id in self.delivered_ids:
                continue
            self.delivered_ids.add(event.event_id)
            fresh.append(event)

        if not fresh:
            return full_page

        # Zero holders is an orphan; two or more raises AmbiguousIdentityError
        if not await self.pipeline.is_deliverable(self.identity_key):
            logger.warning(
                f"Dropping {len(fresh)} orphaned notification events",
                extra={"identity_key": self.identity_key, "event_id": fresh[0].event_id}
            )
            return full_page

        if self.cancelled:
            return False

        self._delivering = True
        try:
            await _invoke(self.on_events, fresh)
        finally:
            self._delivering = False
        return full_page

    async def _fail(self, error: Exception) -> None:
        logger.error(
            f"Notification subscription failed: {error!r}",
            extra={"identity_key": self.identity_key}
        )
        if self.on_error is None or self.cancelled:
            return
        self.cancelled = True
        try:
            await _invoke(self.on_error, error)
        except Exception:
            logger.exception(
                "Subscription error callback raised",
                extra={"identity_key": self.identity_key}
            )


class NotificationPipeline:
    """Service managing live notification subscriptions"""

    def __init__(
        self,
        synchronizer: Optional[CollectionSynchronizer] = None,
        resolver: Optional[IdentityResolver] = None,
    ):
        self.synchronizer = synchronizer or CollectionSynchronizer()
        self.resolver = resolver or self.synchronizer.resolver
        self._subscriptions: Set[Subscription] = set()

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        identity_key: str,
        on_events: EventsCallback,
        on_error: Optional[ErrorCallback] = None,
        since_cursor: Optional[NotificationCursor] = None,
    ) -> Subscription:
        """
        Start delivering a key's notification events

        Must be called from a running event loop. ``on_events`` receives
        batches in (created_at, event_id) order and never sees an event_id
        twice. ``on_error`` is called at most once, with a fatal error,
        after which the subscription is closed.
        """
        subscription = Subscription(self, identity_key, on_events, on_error, since_cursor)
        self._subscriptions.add(subscription)
        subscription.start()

        logger.info("Notification subscription opened", extra={"identity_key": identity_key})
        return subscription

    async def is_deliverable(self, identity_key: str) -> bool:
        """
        True if the key still maps to an active staff record

        Raises:
            AmbiguousIdentityError: More than one active record carries the key
        """
        return await self.resolver.active_holder(identity_key) is not None

    async def close(self) -> None:
        """Cancel every subscription and wait for their tasks"""
        subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()
        for subscription in subscriptions:
            await subscription.wait_closed()
