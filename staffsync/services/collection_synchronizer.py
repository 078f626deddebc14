"""Collection Synchronizer - Reads and writes keyed on the canonical identity

Jobs live in two independently evolving collections (``jobs`` and
``job_assignments``). Both are queried on ``assigned_identity_key`` only and
merged into one ordered list. Notifications are an append-only stream per
``target_identity_key``.
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from pymongo.errors import OperationFailure

from ..config.settings import settings
from ..domain.enums import (
    JOB_STATUS_TIMESTAMP_FIELDS,
    JOB_STATUS_TRANSITIONS,
    JobStatus,
    NotificationKind,
)
from ..domain.errors import (
    DuplicateEventError,
    InvalidStateError,
    JobNotFoundError,
    NotificationNotFoundError,
    PartialAvailabilityError,
    PermissionDeniedError,
)
from ..domain.models import JobAssignment, NotificationCursor, NotificationEvent
from ..repositories.job_repo import JobRepository
from ..repositories.notification_repo import NotificationRepository
from ..utils.idgen import job_assigned_event_id
from ..utils.logger import get_logger
from ..utils.time import format_iso, utc_now
from .identity_resolver import IdentityResolver

logger = get_logger(__name__)

UNAUTHORIZED_CODE = 13


def is_authorization_failure(error: OperationFailure) -> bool:
    """True when the store refused access rather than failing the query"""
    return error.code == UNAUTHORIZED_CODE or "not authorized" in str(error).lower()


class CollectionSynchronizer:
    """Service for identity-keyed job and notification access"""

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        job_repos: Optional[List[JobRepository]] = None,
        notification_repo: Optional[NotificationRepository] = None,
    ):
        self.resolver = resolver or IdentityResolver()
        self.job_repos = job_repos if job_repos is not None else [
            JobRepository(name) for name in settings.job_collections_list
        ]
        self.notification_repo = notification_repo or NotificationRepository()
        self._listeners: Dict[str, Set[asyncio.Event]] = {}

    # =========================================================================
    # Jobs
    # =========================================================================

    async def query_jobs_for(
        self,
        identity_key: str,
        statuses: Optional[List[JobStatus]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[JobAssignment]:
        """
        Jobs assigned to a canonical key across every job collection

        Ordered by created_at, ties by job_id. A job present in more than one
        collection is reported once, from the first configured collection.

        Raises:
            PartialAvailabilityError: Some collections refused access; carries
                the jobs that were readable
            PermissionDeniedError: Every collection refused access
        """
        jobs: Dict[str, JobAssignment] = {}
        succeeded: List[str] = []
        failed: List[str] = []

        for repo in self.job_repos:
            try:
                found = await repo.find_for_key(identity_key, statuses, created_from, created_to)
            except OperationFailure as e:
                if not is_authorization_failure(e):
                    raise
                logger.warning(
                    f"Job collection unavailable: {e}",
                    extra={"collection": repo.collection_name, "identity_key": identity_key}
                )
                failed.append(repo.collection_name)
                continue

            succeeded.append(repo.collection_name)
            for job in found:
                jobs.setdefault(job.job_id, job)

        ordered = sorted(jobs.values(), key=lambda j: (j.created_at, j.job_id))

        if failed and not succeeded:
            raise PermissionDeniedError(
                "No job collection is readable",
                details={"failed": failed}
            )
        if failed:
            raise PartialAvailabilityError(
                "Some job collections are unavailable",
                succeeded=succeeded,
                failed=failed,
                jobs=ordered,
            )
        return ordered

    async def get_job(self, job_id: str) -> Tuple[JobRepository, JobAssignment]:
        """Find a job and the collection that holds it"""
        for repo in self.job_repos:
            job = await repo.get(job_id)
            if job is not None:
                return repo, job
        raise JobNotFoundError(f"Job not found: {job_id}", details={"job_id": job_id})

    async def assign_job(self, job_id: str, staff_ref: str) -> JobAssignment:
        """
        Assign a job to a staff member

        The reference is resolved first; only the canonical key is written.
        A job_assigned notification is emitted; a retried assignment finds
        the event already written and carries on.
        """
        identity_key = await self.resolver.resolve(staff_ref)
        repo, job = await self.get_job(job_id)

        if job.status not in (JobStatus.PENDING, JobStatus.ASSIGNED):
            raise InvalidStateError(
                f"Cannot assign job in status {job.status.value}",
                details={"job_id": job_id, "status": job.status.value}
            )

        now = format_iso(utc_now())
        updated = await repo.update_fields(
            job_id,
            {
                "assigned_identity_key": identity_key,
                "status": JobStatus.ASSIGNED.value,
                "assigned_at": now,
                "updated_at": now,
            },
            expected_status=job.status,
        )
        if updated is None:
            raise InvalidStateError(
                "Job changed while assigning",
                details={"job_id": job_id}
            )

        logger.info(
            "Job assigned",
            extra={"job_id": job_id, "identity_key": identity_key, "collection": repo.collection_name}
        )

        event = NotificationEvent(
            event_id=job_assigned_event_id(job_id, identity_key),
            target_identity_key=identity_key,
            kind=NotificationKind.JOB_ASSIGNED,
            title="New job assigned",
            message=updated.title or f"Job {job_id}",
            job_id=job_id,
            data={"property_address": updated.property_address, "priority": updated.priority},
            created_at=utc_now(),
        )
        try:
            await self.write_notification(event)
        except DuplicateEventError:
            logger.info("Assignment notification already sent", extra={"event_id": event.event_id})

        return updated

    async def update_job_status(self, job_id: str, status: JobStatus) -> JobAssignment:
        """
        Move a job along its lifecycle

        Raises:
            InvalidStateError: Transition not allowed, or the job changed
                concurrently
        """
        status = JobStatus(status)
        repo, job = await self.get_job(job_id)

        if status not in JOB_STATUS_TRANSITIONS[job.status]:
            raise InvalidStateError(
                f"Cannot move job from {job.status.value} to {status.value}",
                details={"job_id": job_id, "from": job.status.value, "to": status.value}
            )

        now = format_iso(utc_now())
        fields = {"status": status.value, "updated_at": now}
        fields[JOB_STATUS_TIMESTAMP_FIELDS[status]] = now

        updated = await repo.update_fields(job_id, fields, expected_status=job.status)
        if updated is None:
            raise InvalidStateError("Job changed while updating", details={"job_id": job_id})

        logger.info(
            f"Job status: {job.status.value} -> {status.value}",
            extra={"job_id": job_id, "identity_key": updated.assigned_identity_key}
        )
        return updated

    # =========================================================================
    # Notifications
    # =========================================================================

    async def query_notifications_for(
        self,
        identity_key: str,
        since_cursor: Optional[NotificationCursor] = None,
        limit: Optional[int] = None,
        unread_only: bool = False,
    ) -> List[NotificationEvent]:
        """Events for a key ordered by created_at then event_id"""
        return await self.notification_repo.find_for_key(
            identity_key,
            since=since_cursor,
            limit=limit or settings.notification_page_size,
            unread_only=unread_only,
        )

    async def write_notification(self, event: NotificationEvent) -> NotificationEvent:
        """
        Append a notification event

        Raises:
            DuplicateEventError: The event_id already exists; store unchanged
        """
        written = await self.notification_repo.insert_if_absent(event)
        if not written:
            raise DuplicateEventError(
                "Notification event already exists",
                details={"event_id": event.event_id}
            )

        self._wake(event.target_identity_key)
        return event

    async def mark_notification_read(self, identity_key: str, event_id: str) -> NotificationEvent:
        """Mark one of the identity's events read"""
        event = await self.notification_repo.mark_read(identity_key, event_id)
        if event is None:
            raise NotificationNotFoundError(
                f"Notification not found: {event_id}",
                details={"event_id": event_id}
            )
        return event

    async def mark_all_notifications_read(self, identity_key: str) -> int:
        """Mark every unread event of the identity read"""
        return await self.notification_repo.mark_all_read(identity_key)

    async def unread_count(self, identity_key: str) -> int:
        """Number of unread events for the identity"""
        return await self.notification_repo.count_unread(identity_key)

    # =========================================================================
    # Local write listeners
    # =========================================================================

    def add_listener(self, identity_key: str) -> asyncio.Event:
        """Register an event that is set whenever this process writes for the key"""
        listener = asyncio.Event()
        self._listeners.setdefault(identity_key, set()).add(listener)
        return listener

    def remove_listener(self, identity_key: str, listener: asyncio.Event) -> None:
        listeners = self._listeners.get(identity_key)
        if not listeners:
            return
        listeners.discard(listener)
        if not listeners:
            del self._listeners[identity_key]

    def _wake(self, identity_key: str) -> None:
        for listener in self._listeners.get(identity_key, ()):
            listener.set()
