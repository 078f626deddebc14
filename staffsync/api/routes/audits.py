"""Audits API - Weekly audit reports and the operator view of failures"""
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..deps import get_audit_report_repo, get_audit_scheduler
from ...config.settings import settings
from ...domain.errors import ValidationError
from ...domain.models import AuditReport, AuditRunSummary
from ...repositories.audit_repo import AuditReportRepository
from ...scheduler.audit_scheduler import AuditScheduler
from ...utils.time import period_bounds

router = APIRouter()


class AuditReportListResponse(BaseModel):
    """Audit reports with count"""
    items: List[AuditReport]
    total: int


def _require_period(period_id: str) -> None:
    try:
        period_bounds(period_id)
    except ValueError as e:
        raise ValidationError(str(e), details={"period_id": period_id}) from e


@router.get("/failed", response_model=AuditReportListResponse)
async def get_failed_audits(
    limit: int = Query(100, ge=1, le=500),
    repo: AuditReportRepository = Depends(get_audit_report_repo)
):
    """Reports that failed on every attempt and need an operator"""
    reports = await repo.list_exhausted(settings.audit_max_attempts, limit=limit)
    return AuditReportListResponse(items=reports, total=len(reports))


@router.get("/scheduler")
async def get_scheduler_status(
    scheduler: AuditScheduler = Depends(get_audit_scheduler)
) -> Dict[str, Any]:
    """Scheduler jobs, next run times and the last run summary"""
    return scheduler.get_status()


@router.get("/{period_id}", response_model=AuditReportListResponse)
async def get_period_audits(
    period_id: str,
    repo: AuditReportRepository = Depends(get_audit_report_repo)
):
    """All reports of one period (YYYY-Www)"""
    _require_period(period_id)
    reports = await repo.list_for_period(period_id)
    return AuditReportListResponse(items=reports, total=len(reports))


@router.post("/{period_id}/run", response_model=AuditRunSummary)
async def run_period_audits(
    period_id: str,
    scheduler: AuditScheduler = Depends(get_audit_scheduler)
):
    """Run the audit for a period now; already generated reports are skipped"""
    return await scheduler.run_period(period_id)


@router.post("/{period_id}/staff/{ref}", response_model=AuditReport)
async def run_staff_audit(
    period_id: str,
    ref: str,
    scheduler: AuditScheduler = Depends(get_audit_scheduler)
):
    """Run the audit for one staff member and period"""
    return await scheduler.audit_staff(ref, period_id)
