"""ID Generation Utilities"""
import hashlib
import uuid
from datetime import datetime, timezone

CANONICAL_KEY_PREFIX = "sk_"


def derive_canonical_key(record_id: str) -> str:
    """
    Derive the canonical identity key for a staff record

    Deterministic: every caller backfilling the same record computes the
    same key, so concurrent resolutions cannot fork two different keys.
    """
    digest = hashlib.sha256(record_id.encode("utf-8")).hexdigest()
    return f"{CANONICAL_KEY_PREFIX}{digest[:28]}"


def audit_report_id(identity_key: str, period_id: str) -> str:
    """Composite report id for (identity key, period)"""
    return f"{identity_key}:{period_id}"


def audit_ready_event_id(report_id: str) -> str:
    """Notification event id for a generated audit report"""
    return f"audit_ready:{report_id}"


def job_assigned_event_id(job_id: str, identity_key: str) -> str:
    """Notification event id for a job assignment"""
    return f"job_assigned:{job_id}:{identity_key}"


def generate_correlation_id() -> str:
    """
    Generate a correlation ID for request tracing

    Returns:
        Correlation ID string with timestamp prefix
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    unique_part = uuid.uuid4().hex[:8]
    return f"COR-{timestamp}-{unique_part}"
