"""Staff Notifications API - Notification stream endpoints"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..deps import get_collection_synchronizer, get_identity_resolver
from ...domain.models import NotificationCursor, NotificationEvent
from ...services.collection_synchronizer import CollectionSynchronizer
from ...services.identity_resolver import IdentityResolver
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================

class NotificationListResponse(BaseModel):
    """A page of notifications with the cursor to continue from"""
    canonical_identity_key: str
    items: List[NotificationEvent]
    next_cursor: Optional[str] = None
    unread_count: int


class MarkReadResponse(BaseModel):
    """Response after marking notifications read"""
    success: bool
    marked_count: int


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/{ref}/notifications", response_model=NotificationListResponse)
async def get_notifications(
    ref: str,
    cursor: Optional[str] = Query(None, description="Opaque cursor from a previous page"),
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer)
):
    """
    Get notifications for a staff member.

    - Oldest first, ties broken by event ID
    - Pass back ``next_cursor`` to get only newer events
    """
    key = await resolver.resolve(ref)
    since = NotificationCursor.decode(cursor) if cursor else None

    events = await synchronizer.query_notifications_for(
        key, since_cursor=since, limit=limit, unread_only=unread_only
    )
    next_cursor = NotificationCursor.after(events[-1]).encode() if events else cursor

    return NotificationListResponse(
        canonical_identity_key=key,
        items=events,
        next_cursor=next_cursor,
        unread_count=await synchronizer.unread_count(key)
    )


@router.post("/{ref}/notifications/read-all", response_model=MarkReadResponse)
async def mark_all_as_read(
    ref: str,
    resolver: IdentityResolver = Depends(get_identity_resolver),
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer)
):
    """Mark all of a staff member's notifications as read"""
    key = await resolver.resolve(ref)
    count = await synchronizer.mark_all_notifications_read(key)
    return MarkReadResponse(success=True, marked_count=count)


@router.post("/{ref}/notifications/{event_id}/read", response_model=MarkReadResponse)
async def mark_as_read(
    ref: str,
    event_id: str,
    resolver: IdentityResolver = Depends(get_identity_resolver),
    synchronizer: CollectionSynchronizer = Depends(get_collection_synchronizer)
):
    """Mark a single notification as read"""
    key = await resolver.resolve(ref)
    await synchronizer.mark_notification_read(key, event_id)
    return MarkReadResponse(success=True, marked_count=1)
