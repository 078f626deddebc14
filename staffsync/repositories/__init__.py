"""Repository modules - Data access layer"""
from .async_mongo import get_async_database, get_async_collection, create_indexes
from .staff_repo import StaffRepository
from .job_repo import JobRepository
from .notification_repo import NotificationRepository
from .audit_repo import AuditReportRepository

__all__ = [
    "get_async_database",
    "get_async_collection",
    "create_indexes",
    "StaffRepository",
    "JobRepository",
    "NotificationRepository",
    "AuditReportRepository",
]
