"""Audit Scheduler - Weekly per-staff audit generation

Every week the scheduler walks the active staff list, resolves each record to
its canonical key and produces one audit report per (key, period). Each staff
member is an isolated unit: its own claim, its own generation timeout, its
own failure record. A failing unit never stops its siblings.

Jobs:
- Weekly run for the period that just ended (CronTrigger)
- Retry of failed reports whose backoff has elapsed (IntervalTrigger)
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..domain.enums import AuditStatus, NotificationKind
from ..domain.errors import (
    AmbiguousIdentityError,
    AuditReportNotFoundError,
    DomainError,
    DuplicateEventError,
    PartialAvailabilityError,
    ValidationError,
)
from ..domain.models import (
    ActivitySummary,
    AuditInsights,
    AuditReport,
    AuditRunSummary,
    NotificationEvent,
    StaffRecord,
)
from ..repositories.audit_repo import AuditReportRepository
from ..services.activity_summary import build_audit_prompt, parse_insights, summarize_activity
from ..services.audit_generator import AuditContentGenerator
from ..services.collection_synchronizer import CollectionSynchronizer
from ..services.identity_resolver import IdentityResolver
from ..utils.idgen import audit_ready_event_id, audit_report_id, generate_correlation_id
from ..utils.logger import get_logger, set_correlation_id
from ..utils.time import current_period_id, period_bounds, previous_period_id, utc_now

logger = get_logger(__name__)

# Unit outcomes
GENERATED = "generated"
SKIPPED = "skipped"
FAILED = "failed"
EXHAUSTED = "exhausted"


class AuditScheduler:
    """
    Background audit scheduler using APScheduler.

    Exactly-once per (key, period) comes from the report document, not from
    the scheduler: a report is claimed with a conditional update before any
    generation starts, and only the claim holder may mark it generated.
    Overlapping runs (manual trigger plus cron, or two servers) therefore
    skip units that are already claimed or generated.
    """

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        synchronizer: Optional[CollectionSynchronizer] = None,
        report_repo: Optional[AuditReportRepository] = None,
        generator: Optional[AuditContentGenerator] = None,
    ):
        self.resolver = resolver or IdentityResolver()
        self.synchronizer = synchronizer or CollectionSynchronizer(resolver=self.resolver)
        self.report_repo = report_repo or AuditReportRepository()
        self.generator = generator or AuditContentGenerator()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._last_run: Optional[AuditRunSummary] = None
        self._last_run_at: Optional[datetime] = None

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Audit scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")

        self.scheduler.add_job(
            self._run_weekly_audit,
            trigger=CronTrigger(
                day_of_week=settings.audit_day_of_week,
                hour=settings.audit_hour,
                minute=0,
                timezone="UTC"
            ),
            id="weekly_audit",
            name="Generate weekly staff audits",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600
        )

        self.scheduler.add_job(
            self._retry_failed_audits,
            trigger=IntervalTrigger(minutes=settings.audit_retry_interval_minutes),
            id="retry_failed_audits",
            name="Retry failed staff audits",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Audit scheduler started (weekly on {settings.audit_day_of_week} "
            f"at {settings.audit_hour:02d}:00 UTC, retries every "
            f"{settings.audit_retry_interval_minutes} min)"
        )

    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            self._is_running = False
            logger.info("Audit scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running"""
        return self._is_running

    def get_status(self) -> Dict[str, Any]:
        """Scheduler state for the operator dashboard"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                })

        return {
            "running": self._is_running,
            "jobs": jobs,
            "last_run": self._last_run.model_dump() if self._last_run else None,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
        }

    # =========================================================================
    # Scheduled entry points
    # =========================================================================

    async def _run_weekly_audit(self) -> None:
        try:
            await self.run_period()
        except Exception as e:
            logger.error(f"Error in weekly audit job: {e}", exc_info=True)

    async def _retry_failed_audits(self) -> None:
        try:
            await self.retry_failed_reports()
        except Exception as e:
            logger.error(f"Error in audit retry job: {e}", exc_info=True)

    # =========================================================================
    # Runs
    # =========================================================================

    async def run_period(self, period_id: Optional[str] = None) -> AuditRunSummary:
        """
        Produce audit reports for every active staff member for one period

        Defaults to the week that just ended. Safe to call repeatedly: units
        already generated are skipped.
        """
        period_id = period_id or previous_period_id(current_period_id())
        self._validate_period(period_id)

        set_correlation_id(generate_correlation_id())
        start_time = utc_now()
        summary = AuditRunSummary(period_id=period_id)

        staff = await self.resolver.staff_repo.list_active()
        summary.staff_count = len(staff)
        logger.info(
            f"Starting audit run for {len(staff)} active staff",
            extra={"period_id": period_id}
        )

        units: List[Tuple[StaffRecord, str]] = []
        seen_keys = set()
        for record in staff:
            try:
                resolved = await self.resolver.resolve_record(record.record_id)
            except AmbiguousIdentityError:
                # Already logged at ERROR by the resolver
                summary.unresolved += 1
                continue
            except DomainError as e:
                logger.warning(
                    f"Skipping staff record, identity unresolved: {e.message}",
                    extra={"record_id": record.record_id, "period_id": period_id}
                )
                summary.unresolved += 1
                continue

            if resolved.canonical_identity_key in seen_keys:
                continue
            seen_keys.add(resolved.canonical_identity_key)
            units.append((resolved, period_id))

        outcomes = await self._run_units(units)
        for outcome in outcomes:
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        duration_ms = (utc_now() - start_time).total_seconds() * 1000
        logger.info(
            f"Audit run complete: {summary.generated} generated, {summary.skipped} skipped, "
            f"{summary.failed} failed, {summary.exhausted} exhausted, "
            f"{summary.unresolved} unresolved ({duration_ms:.0f} ms)",
            extra={"period_id": period_id}
        )

        self._last_run = summary
        self._last_run_at = utc_now()
        return summary

    async def retry_failed_reports(self) -> Dict[str, int]:
        """Reprocess failed reports whose retry time has passed"""
        set_correlation_id(generate_correlation_id())
        reports = await self.report_repo.list_retryable(settings.audit_max_attempts, utc_now())
        counts = {GENERATED: 0, SKIPPED: 0, FAILED: 0, EXHAUSTED: 0}
        if not reports:
            return counts

        logger.info(f"Found {len(reports)} audit reports to retry")

        units: List[Tuple[StaffRecord, str]] = []
        for report in reports:
            try:
                record = await self.resolver.resolve_record(report.canonical_identity_key)
            except DomainError as e:
                logger.warning(
                    f"Not retrying audit, identity unresolved: {e.message}",
                    extra={"report_id": report.report_id}
                )
                counts[SKIPPED] += 1
                continue
            units.append((record, report.period_id))

        for outcome in await self._run_units(units):
            counts[outcome] += 1

        logger.info(
            f"Audit retry complete: {counts[GENERATED]} generated, {counts[FAILED]} failed, "
            f"{counts[EXHAUSTED]} exhausted"
        )
        return counts

    async def audit_staff(self, staff_ref: str, period_id: Optional[str] = None) -> AuditReport:
        """Run the audit unit for one staff member (manual trigger)"""
        period_id = period_id or previous_period_id(current_period_id())
        self._validate_period(period_id)

        record = await self.resolver.resolve_record(staff_ref)
        await self._run_units([(record, period_id)])

        report = await self.get_report(record.canonical_identity_key, period_id)
        if report is None:
            raise AuditReportNotFoundError(
                "Audit report was not created",
                details={"staff_ref": staff_ref, "period_id": period_id}
            )
        return report

    async def get_report(self, identity_key: str, period_id: str) -> Optional[AuditReport]:
        return await self.report_repo.get(audit_report_id(identity_key, period_id))

    # =========================================================================
    # Units
    # =========================================================================

    async def _run_units(self, units: List[Tuple[StaffRecord, str]]) -> List[str]:
        """Run units with bounded concurrency; one unit's failure stays in that unit"""
        semaphore = asyncio.Semaphore(max(1, settings.audit_concurrency))

        async def guarded(record: StaffRecord, period_id: str) -> str:
            async with semaphore:
                return await self._process_unit(record, period_id)

        results = await asyncio.gather(
            *(guarded(record, period_id) for record, period_id in units),
            return_exceptions=True
        )

        outcomes = []
        for (record, period_id), result in zip(units, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Audit unit crashed: {result!r}",
                    extra={"identity_key": record.canonical_identity_key, "period_id": period_id}
                )
                outcomes.append(FAILED)
            else:
                outcomes.append(result)
        return outcomes

    async def _process_unit(self, record: StaffRecord, period_id: str) -> str:
        identity_key = record.canonical_identity_key
        period_start, period_end = period_bounds(period_id)

        report = await self.report_repo.ensure(identity_key, period_id, period_start, period_end)

        if report.status == AuditStatus.GENERATED:
            if report.notified_at is None:
                try:
                    await self._notify_ready(report)
                except DomainError as e:
                    logger.warning(
                        f"Audit ready notification still not written: {e.message}",
                        extra={"report_id": report.report_id}
                    )
            return SKIPPED

        stale_before = utc_now() - timedelta(minutes=settings.audit_claim_timeout_minutes)
        claimed = await self.report_repo.claim(report.report_id, settings.audit_max_attempts, stale_before)
        if claimed is None:
            if report.status == AuditStatus.FAILED and report.attempts >= settings.audit_max_attempts:
                return EXHAUSTED
            if report.status == AuditStatus.FAILED:
                logger.info(
                    f"Audit report retry not due until {report.next_retry_at}",
                    extra={"report_id": report.report_id, "attempt": report.attempts}
                )
                return SKIPPED
            logger.info(
                f"Audit report not claimable (status {report.status.value})",
                extra={"report_id": report.report_id}
            )
            return SKIPPED

        logger.info(
            "Generating audit report",
            extra={"report_id": claimed.report_id, "attempt": claimed.attempts}
        )

        try:
            content, insights, activity = await self._generate(record, claimed)
        except Exception as e:
            return await self._record_failure(claimed, e)

        generated = await self.report_repo.mark_generated(claimed.report_id, content, insights, activity)
        if generated is None:
            # Claim went stale and another runner took the report over
            logger.warning("Lost audit report claim", extra={"report_id": claimed.report_id})
            return SKIPPED

        try:
            await self._notify_ready(generated)
        except DomainError as e:
            # The next run emits the missing notification
            logger.warning(
                f"Audit ready notification not written: {e.message}",
                extra={"report_id": generated.report_id}
            )
        return GENERATED

    async def _generate(
        self,
        record: StaffRecord,
        report: AuditReport,
    ) -> Tuple[str, AuditInsights, ActivitySummary]:
        partial = False
        try:
            jobs = await self.synchronizer.query_jobs_for(
                report.canonical_identity_key,
                created_from=report.period_start,
                created_to=report.period_end,
            )
        except PartialAvailabilityError as e:
            jobs = e.jobs
            partial = True

        activity = summarize_activity(jobs, settings.audit_late_threshold_ratio, partial=partial)
        prompt = build_audit_prompt(record, activity, report.period_id, jobs)

        content = await asyncio.wait_for(
            self.generator.generate(prompt),
            timeout=settings.audit_generation_timeout_seconds
        )
        return content, parse_insights(content), activity

    async def _record_failure(self, report: AuditReport, error: Exception) -> str:
        message = str(error) or type(error).__name__
        if isinstance(error, asyncio.TimeoutError):
            message = f"Generation timed out after {settings.audit_generation_timeout_seconds}s"

        if report.attempts >= settings.audit_max_attempts:
            await self.report_repo.mark_failed(report.report_id, message, None)
            logger.error(
                f"Audit generation failed permanently after {report.attempts} attempts: {message}",
                extra={
                    "report_id": report.report_id,
                    "identity_key": report.canonical_identity_key,
                    "period_id": report.period_id,
                    "attempt": report.attempts,
                    "alert": True,
                }
            )
            return EXHAUSTED

        delay = timedelta(minutes=settings.audit_retry_backoff_minutes * (2 ** (report.attempts - 1)))
        await self.report_repo.mark_failed(report.report_id, message, utc_now() + delay)
        logger.warning(
            f"Audit generation failed, retry in {delay}: {message}",
            extra={"report_id": report.report_id, "attempt": report.attempts}
        )
        return FAILED

    async def _notify_ready(self, report: AuditReport) -> None:
        insights = report.insights
        event = NotificationEvent(
            event_id=audit_ready_event_id(report.report_id),
            target_identity_key=report.canonical_identity_key,
            kind=NotificationKind.AUDIT_READY,
            title="Weekly audit ready",
            message=f"Your performance audit for {report.period_id} is available",
            report_id=report.report_id,
            data={
                "period_id": report.period_id,
                "trust_score": insights.trust_score if insights else None,
                "quality_score": insights.quality_score if insights else None,
            },
            created_at=utc_now(),
        )

        try:
            await self.synchronizer.write_notification(event)
        except DuplicateEventError:
            logger.info("Audit ready notification already exists", extra={"event_id": event.event_id})

        await self.report_repo.mark_notified(report.report_id)

    @staticmethod
    def _validate_period(period_id: str) -> None:
        try:
            period_bounds(period_id)
        except ValueError as e:
            raise ValidationError(str(e), details={"period_id": period_id}) from e


# Global scheduler instance
_scheduler: Optional[AuditScheduler] = None


def get_scheduler() -> AuditScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = AuditScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
