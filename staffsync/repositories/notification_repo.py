"""Notification Repository - Data access for the per-identity notification stream

Events are append-only. The only mutation is flipping ``read``.
"""
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .async_mongo import get_async_collection
from ..domain.models import NotificationCursor, NotificationEvent
from ..utils.logger import get_logger
from ..utils.retry import call_with_retry
from ..utils.time import format_iso, utc_now

logger = get_logger(__name__)


def _to_event(doc: Dict[str, Any]) -> NotificationEvent:
    doc_id = doc.pop("_id", None)
    doc.setdefault("event_id", doc_id)
    return NotificationEvent.model_validate(doc)


class NotificationRepository:
    """Repository for notification event operations"""

    COLLECTION_NAME = "notifications"

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._events: AsyncIOMotorCollection = get_async_collection(self.COLLECTION_NAME, database)

    async def insert_if_absent(self, event: NotificationEvent) -> bool:
        """
        Append an event unless its event_id already exists.

        Uses an upsert with $setOnInsert so an existing event is left
        untouched.

        Returns:
            True if the event was written, False if the id was taken
        """
        doc = event.model_dump(mode="json")

        try:
            result = await call_with_retry(
                lambda: self._events.update_one(
                    {"_id": event.event_id},
                    {"$setOnInsert": doc},
                    upsert=True
                ),
                "notifications.insert"
            )
        except DuplicateKeyError:
            # Lost a concurrent upsert race on the same _id
            return False

        if result.upserted_id is None:
            return False

        logger.info(
            f"Created notification: {event.kind.value}",
            extra={"event_id": event.event_id, "identity_key": event.target_identity_key}
        )
        return True

    async def get(self, event_id: str) -> Optional[NotificationEvent]:
        """Get a notification event by ID"""
        doc = await call_with_retry(
            lambda: self._events.find_one({"_id": event_id}),
            "notifications.get"
        )
        return _to_event(doc) if doc else None

    async def find_for_key(
        self,
        identity_key: str,
        since: Optional[NotificationCursor] = None,
        limit: int = 100,
        unread_only: bool = False,
    ) -> List[NotificationEvent]:
        """
        Events for an identity ordered by (created_at, event_id) ascending.

        With ``since`` only events strictly after that position are returned.
        """
        query: Dict[str, Any] = {"target_identity_key": identity_key}

        if unread_only:
            query["read"] = False

        if since is not None:
            created_at = format_iso(since.created_at)
            query["$or"] = [
                {"created_at": {"$gt": created_at}},
                {"created_at": created_at, "event_id": {"$gt": since.event_id}},
            ]

        docs = await call_with_retry(
            lambda: self._events.find(query)
            .sort([("created_at", ASCENDING), ("event_id", ASCENDING)])
            .limit(limit)
            .to_list(length=None),
            "notifications.find_for_key"
        )
        return [_to_event(doc) for doc in docs]

    async def mark_read(self, identity_key: str, event_id: str) -> Optional[NotificationEvent]:
        """Mark one event read; None if it does not belong to this identity"""
        doc = await call_with_retry(
            lambda: self._events.find_one_and_update(
                {"_id": event_id, "target_identity_key": identity_key},
                {"$set": {"read": True, "read_at": format_iso(utc_now())}},
                return_document=ReturnDocument.AFTER
            ),
            "notifications.mark_read"
        )
        return _to_event(doc) if doc else None

    async def mark_all_read(self, identity_key: str) -> int:
        """Mark all events read for an identity. Returns count of updated."""
        result = await call_with_retry(
            lambda: self._events.update_many(
                {"target_identity_key": identity_key, "read": False},
                {"$set": {"read": True, "read_at": format_iso(utc_now())}}
            ),
            "notifications.mark_all_read"
        )
        logger.info(
            f"Marked {result.modified_count} notifications as read",
            extra={"identity_key": identity_key}
        )
        return result.modified_count

    async def count_unread(self, identity_key: str) -> int:
        """Count of unread events for an identity"""
        return await call_with_retry(
            lambda: self._events.count_documents({"target_identity_key": identity_key, "read": False}),
            "notifications.count_unread"
        )
