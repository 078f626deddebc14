"""
Pytest Configuration and Fixtures

Every test gets its own in-memory MongoDB (mongomock-motor) and settings
tuned for fast retries and short polling.
"""
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

import pytest
from mongomock_motor import AsyncMongoMockClient

from staffsync.config.settings import settings
from staffsync.domain.enums import JobStatus
from staffsync.domain.models import JobAssignment, StaffRecord
from staffsync.repositories.audit_repo import AuditReportRepository
from staffsync.repositories.job_repo import JobRepository
from staffsync.repositories.notification_repo import NotificationRepository
from staffsync.repositories.staff_repo import StaffRepository
from staffsync.services.collection_synchronizer import CollectionSynchronizer
from staffsync.services.identity_resolver import IdentityResolver

from tests.fakes import FakeAuditGenerator


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Short timeouts and zero backoff"""
    monkeypatch.setattr(settings, "store_timeout_seconds", 2.0)
    monkeypatch.setattr(settings, "store_retry_attempts", 3)
    monkeypatch.setattr(settings, "store_retry_backoff_seconds", 0.0)
    monkeypatch.setattr(settings, "store_retry_max_backoff_seconds", 0.0)
    monkeypatch.setattr(settings, "job_collections", "jobs,job_assignments")
    monkeypatch.setattr(settings, "subscription_poll_interval_seconds", 0.05)
    monkeypatch.setattr(settings, "subscription_max_backoff_seconds", 0.2)
    monkeypatch.setattr(settings, "audit_retry_backoff_minutes", 0.0)
    monkeypatch.setattr(settings, "audit_generation_timeout_seconds", 1.0)
    monkeypatch.setattr(settings, "audit_max_attempts", 3)
    monkeypatch.setattr(settings, "audit_concurrency", 4)


@pytest.fixture
def db():
    """Fresh in-memory database"""
    return AsyncMongoMockClient()["staffsync_test"]


@pytest.fixture
def staff_repo(db) -> StaffRepository:
    return StaffRepository(database=db)


@pytest.fixture
def job_repos(db) -> List[JobRepository]:
    return [JobRepository(name, database=db) for name in settings.job_collections_list]


@pytest.fixture
def notification_repo(db) -> NotificationRepository:
    return NotificationRepository(database=db)


@pytest.fixture
def report_repo(db) -> AuditReportRepository:
    return AuditReportRepository(database=db)


@pytest.fixture
def resolver(staff_repo) -> IdentityResolver:
    return IdentityResolver(staff_repo)


@pytest.fixture
def synchronizer(resolver, job_repos, notification_repo) -> CollectionSynchronizer:
    return CollectionSynchronizer(
        resolver=resolver,
        job_repos=job_repos,
        notification_repo=notification_repo,
    )


@pytest.fixture
def fake_generator() -> FakeAuditGenerator:
    return FakeAuditGenerator()


@pytest.fixture
def create_staff(staff_repo) -> Callable[..., Awaitable[StaffRecord]]:
    """Factory inserting a staff record"""

    async def _create(record_id: str, email: str, key: Optional[str] = None, **kwargs: Any) -> StaffRecord:
        return await staff_repo.create(StaffRecord(
            record_id=record_id,
            email=email,
            canonical_identity_key=key,
            **kwargs
        ))

    return _create


@pytest.fixture
def create_job(job_repos) -> Callable[..., Awaitable[JobAssignment]]:
    """Factory inserting a job into one of the job collections"""

    async def _create(
        job_id: str,
        key: Optional[str],
        created_at: datetime,
        collection: str = "jobs",
        status: JobStatus = JobStatus.ASSIGNED,
        **kwargs: Any
    ) -> JobAssignment:
        repo = next(r for r in job_repos if r.collection_name == collection)
        return await repo.insert(JobAssignment(
            job_id=job_id,
            assigned_identity_key=key,
            created_at=created_at,
            status=status,
            **kwargs
        ))

    return _create
