"""Activity Summary - Weekly job metrics and the audit prompt built from them"""
import json
from typing import Any, Dict, List, Optional

from ..domain.enums import JobStatus
from ..domain.models import ActivitySummary, AuditInsights, JobAssignment, StaffRecord
from ..utils.logger import get_logger
from ..utils.time import format_iso, hours_between

logger = get_logger(__name__)

DEFAULT_LATE_RATIO = 1.2
OPEN_STATUSES = (JobStatus.PENDING, JobStatus.ASSIGNED, JobStatus.IN_PROGRESS)
MAX_PROMPT_JOBS = 50


def actual_hours(job: JobAssignment) -> Optional[float]:
    """Hours from start (or assignment) to completion; None if unknown"""
    started = job.started_at or job.assigned_at
    if started is None or job.completed_at is None:
        return None
    return max(0.0, hours_between(started, job.completed_at))


def summarize_activity(
    jobs: List[JobAssignment],
    late_ratio: float = DEFAULT_LATE_RATIO,
    partial: bool = False,
) -> ActivitySummary:
    """
    Compute period metrics for one staff member

    A completed job is late when it took more than ``late_ratio`` times its
    estimate. Completed jobs without photos count as missing proof.
    """
    completed = [j for j in jobs if j.status == JobStatus.COMPLETED]
    timed = [(j, actual_hours(j)) for j in completed]
    timed = [(j, hours) for j, hours in timed if hours is not None]

    late = [j for j, hours in timed if hours > j.estimated_duration_hours * late_ratio]
    total_actual = sum(hours for _, hours in timed)
    total_estimated = sum(j.estimated_duration_hours for j, _ in timed)

    return ActivitySummary(
        total_jobs=len(jobs),
        completed_jobs=len(completed),
        completed_on_time=len(timed) - len(late),
        late_jobs=len(late),
        cancelled_jobs=sum(1 for j in jobs if j.status == JobStatus.CANCELLED),
        open_jobs=sum(1 for j in jobs if j.status in OPEN_STATUSES),
        missing_proof=sum(1 for j in completed if j.photo_count == 0),
        average_completion_hours=round(total_actual / len(timed), 2) if timed else 0.0,
        estimated_vs_actual_pct=round(total_actual / total_estimated * 100, 1) if total_estimated > 0 else 100.0,
        partial=partial,
    )


def build_audit_prompt(
    staff: StaffRecord,
    summary: ActivitySummary,
    period_id: str,
    jobs: List[JobAssignment],
) -> str:
    """User prompt describing one staff member's week"""
    job_lines = []
    for job in jobs[:MAX_PROMPT_JOBS]:
        hours = actual_hours(job)
        job_lines.append({
            "job_id": job.job_id,
            "type": job.job_type,
            "priority": job.priority,
            "status": job.status.value,
            "estimated_hours": job.estimated_duration_hours,
            "actual_hours": round(hours, 2) if hours is not None else None,
            "photos": job.photo_count,
            "created_at": format_iso(job.created_at),
        })

    name = staff.display_name or staff.email
    prompt = f"""Weekly performance audit for {name} ({staff.role.value}), period {period_id}.

Metrics:
{json.dumps(summary.model_dump(), indent=2)}

Jobs:
{json.dumps(job_lines, indent=2)}"""

    if summary.partial:
        prompt += "\n\nNote: some job records were unavailable; metrics may be incomplete."
    return prompt


def _clamp_score(value: Any) -> int:
    try:
        score = int(value)
    except (TypeError, ValueError):
        return 75
    if score == 0:
        return 75
    return max(1, min(100, score))


def parse_insights(text: str) -> AuditInsights:
    """
    Parse generated JSON insights

    Unparseable output still yields a usable report flagged for manual
    review.
    """
    try:
        parsed: Dict[str, Any] = json.loads(text)
        if not isinstance(parsed, dict):
            raise ValueError("insights are not a JSON object")
    except (ValueError, TypeError) as e:
        logger.warning(f"Could not parse audit insights: {e}")
        return AuditInsights(
            trust_score=75,
            quality_score=75,
            comment="Unable to generate detailed analysis. Manual review recommended.",
            recommendations=["Schedule performance review"],
            flagged_issues=["AI analysis failed"],
        )

    recommendations = parsed.get("recommendations")
    flagged = parsed.get("flaggedIssues")
    return AuditInsights(
        trust_score=_clamp_score(parsed.get("trustScore")),
        quality_score=_clamp_score(parsed.get("qualityScore")),
        comment=str(parsed.get("comment") or "Performance within acceptable range."),
        recommendations=[str(r) for r in recommendations] if isinstance(recommendations, list)
        else ["Continue current performance level"],
        flagged_issues=[str(f) for f in flagged] if isinstance(flagged, list) else [],
    )
