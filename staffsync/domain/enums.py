"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class StaffRole(str, Enum):
    """Staff member role"""
    CLEANER = "cleaner"
    MAINTENANCE = "maintenance"
    HOUSEKEEPING = "housekeeping"
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


class JobStatus(str, Enum):
    """Job assignment lifecycle"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed job status transitions; completed and cancelled are terminal
JOB_STATUS_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.ASSIGNED, JobStatus.CANCELLED},
    JobStatus.ASSIGNED: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

# Timestamp field stamped when a job enters a status
JOB_STATUS_TIMESTAMP_FIELDS = {
    JobStatus.ASSIGNED: "assigned_at",
    JobStatus.IN_PROGRESS: "started_at",
    JobStatus.COMPLETED: "completed_at",
    JobStatus.CANCELLED: "cancelled_at",
}


class NotificationKind(str, Enum):
    """Kind of delivery-worthy event"""
    JOB_ASSIGNED = "job_assigned"
    JOB_REMINDER = "job_reminder"
    SYSTEM = "system"
    AUDIT_READY = "audit_ready"


class AuditStatus(str, Enum):
    """Audit report state per (identity key, period)"""
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    FAILED = "failed"
