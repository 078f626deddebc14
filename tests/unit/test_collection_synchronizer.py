"""Unit tests for the collection synchronizer.

Tests identity-keyed job reads across both job collections, partial
availability, append-only notifications and job lifecycle writes.
"""

import pytest

from staffsync.domain.enums import JobStatus, NotificationKind
from staffsync.domain.errors import (
    DuplicateEventError,
    InvalidStateError,
    JobNotFoundError,
    NotificationNotFoundError,
    PartialAvailabilityError,
    PermissionDeniedError,
)
from staffsync.domain.models import NotificationCursor, NotificationEvent
from staffsync.services.collection_synchronizer import CollectionSynchronizer

from tests.fakes import DeniedJobRepository, utc

KEY_1 = "sk_0123456789abcdef0123456789ab"
KEY_2 = "sk_fedcba9876543210fedcba987654"


def make_event(event_id, key=KEY_1, created_at=None, kind=NotificationKind.SYSTEM):
    return NotificationEvent(
        event_id=event_id,
        target_identity_key=key,
        kind=kind,
        title=f"Event {event_id}",
        created_at=created_at or utc(2025, 1, 6, 9, 0),
    )


class TestQueryJobs:
    """Tests for query_jobs_for."""

    @pytest.mark.asyncio
    async def test_jobs_keyed_on_canonical_identity_only(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6, 9))
        await create_job("J2", KEY_2, utc(2025, 1, 6, 10))

        mine = await synchronizer.query_jobs_for(KEY_1)
        theirs = await synchronizer.query_jobs_for(KEY_2)

        assert [j.job_id for j in mine] == ["J1"]
        assert [j.job_id for j in theirs] == ["J2"]

    @pytest.mark.asyncio
    async def test_record_id_does_not_match_jobs(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6, 9))

        assert await synchronizer.query_jobs_for("S1") == []

    @pytest.mark.asyncio
    async def test_collections_merged_in_creation_order(self, synchronizer, create_job):
        await create_job("J3", KEY_1, utc(2025, 1, 8), collection="jobs")
        await create_job("J1", KEY_1, utc(2025, 1, 6), collection="job_assignments")
        await create_job("J2", KEY_1, utc(2025, 1, 7), collection="jobs")

        jobs = await synchronizer.query_jobs_for(KEY_1)

        assert [j.job_id for j in jobs] == ["J1", "J2", "J3"]
        assert jobs[0].source_collection == "job_assignments"
        assert jobs[1].source_collection == "jobs"

    @pytest.mark.asyncio
    async def test_duplicate_job_reported_once(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6), collection="jobs")
        await create_job("J1", KEY_1, utc(2025, 1, 6), collection="job_assignments")

        jobs = await synchronizer.query_jobs_for(KEY_1)

        assert len(jobs) == 1
        assert jobs[0].source_collection == "jobs"

    @pytest.mark.asyncio
    async def test_status_and_date_filters(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 5, 23, 59), status=JobStatus.COMPLETED)
        await create_job("J2", KEY_1, utc(2025, 1, 6, 0, 0), status=JobStatus.COMPLETED)
        await create_job("J3", KEY_1, utc(2025, 1, 7), status=JobStatus.CANCELLED)
        await create_job("J4", KEY_1, utc(2025, 1, 13), status=JobStatus.COMPLETED)

        jobs = await synchronizer.query_jobs_for(
            KEY_1,
            statuses=[JobStatus.COMPLETED],
            created_from=utc(2025, 1, 6),
            created_to=utc(2025, 1, 13),
        )

        assert [j.job_id for j in jobs] == ["J2"]

    @pytest.mark.asyncio
    async def test_restricted_collection_yields_partial_result(
        self, resolver, db, job_repos, notification_repo, create_job
    ):
        await create_job("J1", KEY_1, utc(2025, 1, 6), collection="jobs")
        synchronizer = CollectionSynchronizer(
            resolver=resolver,
            job_repos=[job_repos[0], DeniedJobRepository("job_assignments", database=db)],
            notification_repo=notification_repo,
        )

        with pytest.raises(PartialAvailabilityError) as exc_info:
            await synchronizer.query_jobs_for(KEY_1)

        error = exc_info.value
        assert [j.job_id for j in error.jobs] == ["J1"]
        assert error.succeeded == ["jobs"]
        assert error.failed == ["job_assignments"]

    @pytest.mark.asyncio
    async def test_every_collection_restricted(self, resolver, db, notification_repo):
        synchronizer = CollectionSynchronizer(
            resolver=resolver,
            job_repos=[
                DeniedJobRepository("jobs", database=db),
                DeniedJobRepository("job_assignments", database=db),
            ],
            notification_repo=notification_repo,
        )

        with pytest.raises(PermissionDeniedError):
            await synchronizer.query_jobs_for(KEY_1)


class TestNotifications:
    """Tests for notification reads and writes."""

    @pytest.mark.asyncio
    async def test_rewriting_event_id_is_rejected(self, synchronizer):
        await synchronizer.write_notification(make_event("E1"))

        with pytest.raises(DuplicateEventError):
            await synchronizer.write_notification(
                make_event("E1", created_at=utc(2025, 2, 1)).model_copy(update={"title": "changed"})
            )

        events = await synchronizer.query_notifications_for(KEY_1)
        assert len(events) == 1
        assert events[0].title == "Event E1"

    @pytest.mark.asyncio
    async def test_ordered_by_created_at_then_event_id(self, synchronizer):
        same_time = utc(2025, 1, 6, 9, 0)
        await synchronizer.write_notification(make_event("E-c", created_at=same_time))
        await synchronizer.write_notification(make_event("E-z", created_at=utc(2025, 1, 6, 8, 0)))
        await synchronizer.write_notification(make_event("E-a", created_at=same_time))

        events = await synchronizer.query_notifications_for(KEY_1)

        assert [e.event_id for e in events] == ["E-z", "E-a", "E-c"]

    @pytest.mark.asyncio
    async def test_since_cursor_returns_strictly_later_events(self, synchronizer):
        same_time = utc(2025, 1, 6, 9, 0)
        for event_id in ("E1", "E2", "E3"):
            await synchronizer.write_notification(make_event(event_id, created_at=same_time))

        first = await synchronizer.query_notifications_for(KEY_1, limit=2)
        rest = await synchronizer.query_notifications_for(
            KEY_1, since_cursor=NotificationCursor.after(first[-1])
        )

        assert [e.event_id for e in first] == ["E1", "E2"]
        assert [e.event_id for e in rest] == ["E3"]

    @pytest.mark.asyncio
    async def test_notifications_isolated_per_key(self, synchronizer):
        await synchronizer.write_notification(make_event("E1", key=KEY_1))
        await synchronizer.write_notification(make_event("E2", key=KEY_2))

        assert [e.event_id for e in await synchronizer.query_notifications_for(KEY_2)] == ["E2"]

    @pytest.mark.asyncio
    async def test_read_flags(self, synchronizer):
        for event_id in ("E1", "E2", "E3"):
            await synchronizer.write_notification(make_event(event_id))

        read = await synchronizer.mark_notification_read(KEY_1, "E1")
        assert read.read is True
        assert read.read_at is not None
        assert await synchronizer.unread_count(KEY_1) == 2

        unread = await synchronizer.query_notifications_for(KEY_1, unread_only=True)
        assert [e.event_id for e in unread] == ["E2", "E3"]

        assert await synchronizer.mark_all_notifications_read(KEY_1) == 2
        assert await synchronizer.unread_count(KEY_1) == 0

    @pytest.mark.asyncio
    async def test_cannot_mark_someone_elses_event(self, synchronizer):
        await synchronizer.write_notification(make_event("E1", key=KEY_2))

        with pytest.raises(NotificationNotFoundError):
            await synchronizer.mark_notification_read(KEY_1, "E1")

    @pytest.mark.asyncio
    async def test_write_wakes_local_listeners(self, synchronizer):
        listener = synchronizer.add_listener(KEY_1)
        other = synchronizer.add_listener(KEY_2)

        await synchronizer.write_notification(make_event("E1"))

        assert listener.is_set()
        assert not other.is_set()

        synchronizer.remove_listener(KEY_1, listener)
        synchronizer.remove_listener(KEY_2, other)


class TestJobWrites:
    """Tests for assignment and status transitions."""

    @pytest.mark.asyncio
    async def test_assign_by_email_stores_canonical_key(self, synchronizer, create_staff, create_job):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await create_job("J1", None, utc(2025, 1, 6), status=JobStatus.PENDING, title="Pool villa turnover")

        job = await synchronizer.assign_job("J1", "a@x.com")

        assert job.assigned_identity_key == KEY_1
        assert job.status == JobStatus.ASSIGNED
        assert job.assigned_at is not None
        assert [j.job_id for j in await synchronizer.query_jobs_for(KEY_1)] == ["J1"]

        events = await synchronizer.query_notifications_for(KEY_1)
        assert len(events) == 1
        assert events[0].kind == NotificationKind.JOB_ASSIGNED
        assert events[0].job_id == "J1"
        assert events[0].message == "Pool villa turnover"

    @pytest.mark.asyncio
    async def test_repeated_assignment_sends_one_notification(self, synchronizer, create_staff, create_job):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await create_job("J1", None, utc(2025, 1, 6), status=JobStatus.PENDING)

        await synchronizer.assign_job("J1", "S1")
        await synchronizer.assign_job("J1", "a@x.com")

        assert len(await synchronizer.query_notifications_for(KEY_1)) == 1

    @pytest.mark.asyncio
    async def test_assign_job_in_second_collection(self, synchronizer, create_staff, create_job):
        await create_staff("S1", "a@x.com", key=KEY_1)
        await create_job("J9", None, utc(2025, 1, 6), collection="job_assignments", status=JobStatus.PENDING)

        job = await synchronizer.assign_job("J9", "S1")

        assert job.source_collection == "job_assignments"

    @pytest.mark.asyncio
    async def test_assign_unknown_job(self, synchronizer, create_staff):
        await create_staff("S1", "a@x.com", key=KEY_1)

        with pytest.raises(JobNotFoundError):
            await synchronizer.assign_job("missing", "S1")

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6), status=JobStatus.ASSIGNED)

        started = await synchronizer.update_job_status("J1", JobStatus.IN_PROGRESS)
        completed = await synchronizer.update_job_status("J1", JobStatus.COMPLETED)

        assert started.started_at is not None
        assert completed.status == JobStatus.COMPLETED
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_status_cannot_change(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6), status=JobStatus.COMPLETED)

        with pytest.raises(InvalidStateError):
            await synchronizer.update_job_status("J1", JobStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_cannot_skip_to_completed(self, synchronizer, create_job):
        await create_job("J1", KEY_1, utc(2025, 1, 6), status=JobStatus.PENDING)

        with pytest.raises(InvalidStateError):
            await synchronizer.update_job_status("J1", JobStatus.COMPLETED)
