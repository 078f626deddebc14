"""Domain Models - Pydantic schemas for all entities"""
import base64
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from .enums import AuditStatus, JobStatus, NotificationKind, StaffRole
from .errors import ValidationError
from ..utils.time import format_iso, parse_iso

# Datetimes persist as fixed-width ISO strings (see utils.time)
Timestamp = Annotated[datetime, PlainSerializer(format_iso, return_type=str, when_used="json")]


# ============================================================================
# Staff Identity
# ============================================================================

class StaffRecord(BaseModel):
    """One employee/contractor (collection: staff_accounts)"""
    model_config = ConfigDict(extra="ignore")

    record_id: str = Field(..., description="Immutable document ID")
    canonical_identity_key: Optional[str] = Field(None, description="Resolved delivery key")
    email: str = Field(..., description="Unique within active records")
    display_name: Optional[str] = None
    is_active: bool = Field(default=True)
    role: StaffRole = Field(default=StaffRole.STAFF)
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None
    deactivated_at: Optional[Timestamp] = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


# ============================================================================
# Jobs
# ============================================================================

class JobAssignment(BaseModel):
    """Work assigned to a staff member (collections: jobs, job_assignments)"""
    model_config = ConfigDict(extra="ignore")

    job_id: str
    assigned_identity_key: Optional[str] = Field(None, description="Canonical key of the assignee")
    status: JobStatus = Field(default=JobStatus.PENDING)
    created_at: Timestamp

    title: Optional[str] = None
    job_type: str = Field(default="general")
    priority: str = Field(default="normal")
    property_address: Optional[str] = None
    estimated_duration_hours: float = Field(default=2.0)
    photo_count: int = Field(default=0)

    assigned_at: Optional[Timestamp] = None
    started_at: Optional[Timestamp] = None
    completed_at: Optional[Timestamp] = None
    cancelled_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    source_collection: Optional[str] = Field(None, description="Collection the job was read from")


# ============================================================================
# Notifications
# ============================================================================

class NotificationEvent(BaseModel):
    """One delivery-worthy event for a staff member (collection: notifications)"""
    model_config = ConfigDict(extra="ignore")

    event_id: str
    target_identity_key: str
    kind: NotificationKind
    title: str = ""
    message: str = ""
    job_id: Optional[str] = None
    report_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = Field(default=False)
    read_at: Optional[Timestamp] = None
    created_at: Timestamp


class NotificationCursor(BaseModel):
    """Position in one identity's notification stream: (created_at, event_id)"""
    model_config = ConfigDict(frozen=True)

    created_at: datetime
    event_id: str

    @classmethod
    def after(cls, event: NotificationEvent) -> "NotificationCursor":
        return cls(created_at=event.created_at, event_id=event.event_id)

    def encode(self) -> str:
        """Opaque string form for API clients"""
        raw = f"{format_iso(self.created_at)}|{self.event_id}"
        return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "NotificationCursor":
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")
            created_at, event_id = raw.split("|", 1)
            return cls(created_at=parse_iso(created_at), event_id=event_id)
        except (ValueError, UnicodeError) as e:
            raise ValidationError("Invalid notification cursor", details={"cursor": token}) from e


# ============================================================================
# Audit Reports
# ============================================================================

class AuditInsights(BaseModel):
    """Scores and commentary parsed from generated audit content"""
    trust_score: int = Field(default=75, ge=1, le=100)
    quality_score: int = Field(default=75, ge=1, le=100)
    comment: str = ""
    recommendations: List[str] = Field(default_factory=list)
    flagged_issues: List[str] = Field(default_factory=list)


class ActivitySummary(BaseModel):
    """A staff member's job activity over one period"""
    total_jobs: int = 0
    completed_jobs: int = 0
    completed_on_time: int = 0
    late_jobs: int = 0
    cancelled_jobs: int = 0
    open_jobs: int = 0
    missing_proof: int = 0
    average_completion_hours: float = 0.0
    estimated_vs_actual_pct: float = 100.0
    partial: bool = Field(default=False, description="Some job collections were unavailable")


class AuditReport(BaseModel):
    """One audit artifact per (canonical identity key, period)"""
    model_config = ConfigDict(extra="ignore")

    report_id: str
    canonical_identity_key: str
    period_id: str
    period_start: Timestamp
    period_end: Timestamp
    status: AuditStatus = Field(default=AuditStatus.PENDING)
    attempts: int = Field(default=0)
    last_error: Optional[str] = None
    next_retry_at: Optional[Timestamp] = None
    claimed_at: Optional[Timestamp] = None
    content: Optional[str] = None
    insights: Optional[AuditInsights] = None
    activity: Optional[ActivitySummary] = None
    generated_at: Optional[Timestamp] = None
    notified_at: Optional[Timestamp] = None
    created_at: Timestamp
    updated_at: Optional[Timestamp] = None


class AuditRunSummary(BaseModel):
    """Outcome counts of one scheduler pass"""
    period_id: str
    staff_count: int = 0
    generated: int = 0
    skipped: int = 0
    failed: int = 0
    exhausted: int = 0
    unresolved: int = 0
