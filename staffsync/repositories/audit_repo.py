"""Audit Report Repository - Data access for weekly audit reports

One document per (canonical identity key, period). State changes are
conditional updates so overlapping scheduler runs cannot both generate the
same report.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .async_mongo import get_async_collection
from ..domain.enums import AuditStatus
from ..domain.models import ActivitySummary, AuditInsights, AuditReport
from ..utils.idgen import audit_report_id
from ..utils.logger import get_logger
from ..utils.retry import call_with_retry
from ..utils.time import format_iso, utc_now

logger = get_logger(__name__)


def _to_report(doc: Dict[str, Any]) -> AuditReport:
    doc_id = doc.pop("_id", None)
    doc.setdefault("report_id", doc_id)
    return AuditReport.model_validate(doc)


class AuditReportRepository:
    """Repository for audit report operations"""

    COLLECTION_NAME = "audit_reports"

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._reports: AsyncIOMotorCollection = get_async_collection(self.COLLECTION_NAME, database)

    async def ensure(
        self,
        identity_key: str,
        period_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> AuditReport:
        """Get the report for (key, period), creating it as pending if absent"""
        report_id = audit_report_id(identity_key, period_id)
        report = AuditReport(
            report_id=report_id,
            canonical_identity_key=identity_key,
            period_id=period_id,
            period_start=period_start,
            period_end=period_end,
            status=AuditStatus.PENDING,
            created_at=utc_now(),
        )
        doc = report.model_dump(mode="json", exclude_none=True)

        try:
            await call_with_retry(
                lambda: self._reports.update_one(
                    {"_id": report_id},
                    {"$setOnInsert": doc},
                    upsert=True
                ),
                "audit_reports.ensure"
            )
        except DuplicateKeyError:
            # Another runner inserted it first
            pass

        existing = await self.get(report_id)
        return existing or report

    async def get(self, report_id: str) -> Optional[AuditReport]:
        """Get a report by ID"""
        doc = await call_with_retry(
            lambda: self._reports.find_one({"_id": report_id}),
            "audit_reports.get"
        )
        return _to_report(doc) if doc else None

    async def claim(
        self,
        report_id: str,
        max_attempts: int,
        stale_before: datetime,
    ) -> Optional[AuditReport]:
        """
        Atomically move a report into GENERATING and count the attempt.

        Claimable: pending, failed with attempts left once ``next_retry_at``
        has passed, or a generating claim older than ``stale_before``
        (crashed runner).

        Returns:
            The claimed report, or None if it is not claimable
        """
        now = format_iso(utc_now())
        doc = await call_with_retry(
            lambda: self._reports.find_one_and_update(
                {
                    "_id": report_id,
                    "$or": [
                        {"status": AuditStatus.PENDING.value},
                        {
                            "status": AuditStatus.FAILED.value,
                            "attempts": {"$lt": max_attempts},
                            "next_retry_at": {"$lte": now}
                        },
                        {
                            "status": AuditStatus.GENERATING.value,
                            "claimed_at": {"$lt": format_iso(stale_before)}
                        },
                    ],
                },
                {
                    "$set": {
                        "status": AuditStatus.GENERATING.value,
                        "claimed_at": now,
                        "updated_at": now,
                    },
                    "$inc": {"attempts": 1},
                },
                return_document=ReturnDocument.AFTER
            ),
            "audit_reports.claim"
        )
        return _to_report(doc) if doc else None

    async def mark_generated(
        self,
        report_id: str,
        content: str,
        insights: Optional[AuditInsights],
        activity: ActivitySummary,
    ) -> Optional[AuditReport]:
        """Store generated content; only applies to a report still GENERATING"""
        now = format_iso(utc_now())
        doc = await call_with_retry(
            lambda: self._reports.find_one_and_update(
                {"_id": report_id, "status": AuditStatus.GENERATING.value},
                {"$set": {
                    "status": AuditStatus.GENERATED.value,
                    "content": content,
                    "insights": insights.model_dump(mode="json") if insights else None,
                    "activity": activity.model_dump(mode="json"),
                    "generated_at": now,
                    "last_error": None,
                    "next_retry_at": None,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER
            ),
            "audit_reports.mark_generated"
        )
        if doc is None:
            return None

        logger.info("Audit report generated", extra={"report_id": report_id})
        return _to_report(doc)

    async def mark_failed(
        self,
        report_id: str,
        error: str,
        next_retry_at: Optional[datetime],
    ) -> Optional[AuditReport]:
        """Record a failed generation attempt"""
        now = format_iso(utc_now())
        doc = await call_with_retry(
            lambda: self._reports.find_one_and_update(
                {"_id": report_id, "status": AuditStatus.GENERATING.value},
                {"$set": {
                    "status": AuditStatus.FAILED.value,
                    "last_error": error[:1000],
                    "next_retry_at": format_iso(next_retry_at) if next_retry_at else None,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER
            ),
            "audit_reports.mark_failed"
        )
        return _to_report(doc) if doc else None

    async def mark_notified(self, report_id: str) -> None:
        """Record that the audit_ready notification exists"""
        now = format_iso(utc_now())
        await call_with_retry(
            lambda: self._reports.update_one(
                {"_id": report_id},
                {"$set": {"notified_at": now, "updated_at": now}}
            ),
            "audit_reports.mark_notified"
        )

    async def list_retryable(self, max_attempts: int, now: datetime, limit: int = 100) -> List[AuditReport]:
        """Failed reports with attempts left whose backoff has elapsed"""
        docs = await call_with_retry(
            lambda: self._reports.find({
                "status": AuditStatus.FAILED.value,
                "attempts": {"$lt": max_attempts},
                "next_retry_at": {"$lte": format_iso(now)},
            }).sort("next_retry_at", ASCENDING).limit(limit).to_list(length=None),
            "audit_reports.list_retryable"
        )
        return [_to_report(doc) for doc in docs]

    async def list_exhausted(self, max_attempts: int, limit: int = 100) -> List[AuditReport]:
        """Failed reports that used up their attempts (operator dashboard)"""
        docs = await call_with_retry(
            lambda: self._reports.find({
                "status": AuditStatus.FAILED.value,
                "attempts": {"$gte": max_attempts},
            }).sort("updated_at", ASCENDING).limit(limit).to_list(length=None),
            "audit_reports.list_exhausted"
        )
        return [_to_report(doc) for doc in docs]

    async def list_for_period(self, period_id: str) -> List[AuditReport]:
        """All reports of one period"""
        docs = await call_with_retry(
            lambda: self._reports.find({"period_id": period_id})
            .sort("canonical_identity_key", ASCENDING)
            .to_list(length=None),
            "audit_reports.list_for_period"
        )
        return [_to_report(doc) for doc in docs]
