"""Job Repository - Data access for one job collection

The same repository class serves every job collection (``jobs`` and
``job_assignments``); each instance is bound to one collection name and
tags the jobs it reads with it.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from .async_mongo import get_async_collection
from ..domain.enums import JobStatus
from ..domain.models import JobAssignment
from ..utils.logger import get_logger
from ..utils.retry import call_with_retry
from ..utils.time import format_iso

logger = get_logger(__name__)


class JobRepository:
    """Repository for job assignment operations on a single collection"""

    def __init__(self, collection_name: str = "jobs", database: Optional[AsyncIOMotorDatabase] = None):
        self.collection_name = collection_name
        self._jobs: AsyncIOMotorCollection = get_async_collection(collection_name, database)

    def _to_job(self, doc: Dict[str, Any]) -> JobAssignment:
        doc_id = doc.pop("_id", None)
        doc.setdefault("job_id", doc_id)
        doc["source_collection"] = self.collection_name
        return JobAssignment.model_validate(doc)

    async def insert(self, job: JobAssignment) -> JobAssignment:
        """Insert a job (job sources and tests)"""
        doc = job.model_dump(mode="json", exclude={"source_collection"})
        doc["_id"] = job.job_id

        await call_with_retry(lambda: self._jobs.insert_one(doc), f"{self.collection_name}.insert")
        logger.info(
            "Created job",
            extra={"job_id": job.job_id, "collection": self.collection_name}
        )
        return job.model_copy(update={"source_collection": self.collection_name})

    async def get(self, job_id: str) -> Optional[JobAssignment]:
        """Get a job by ID"""
        doc = await call_with_retry(
            lambda: self._jobs.find_one({"_id": job_id}),
            f"{self.collection_name}.get"
        )
        return self._to_job(doc) if doc else None

    async def find_for_key(
        self,
        identity_key: str,
        statuses: Optional[List[JobStatus]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[JobAssignment]:
        """Jobs assigned to a canonical identity key, oldest first"""
        query: Dict[str, Any] = {"assigned_identity_key": identity_key}

        if statuses:
            query["status"] = {"$in": [JobStatus(s).value for s in statuses]}

        created_range: Dict[str, str] = {}
        if created_from is not None:
            created_range["$gte"] = format_iso(created_from)
        if created_to is not None:
            created_range["$lt"] = format_iso(created_to)
        if created_range:
            query["created_at"] = created_range

        docs = await call_with_retry(
            lambda: self._jobs.find(query)
            .sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            .to_list(length=None),
            f"{self.collection_name}.find_for_key"
        )
        return [self._to_job(doc) for doc in docs]

    async def update_fields(
        self,
        job_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[JobStatus] = None,
    ) -> Optional[JobAssignment]:
        """
        Update a job, optionally only if it is still in the expected status

        Returns:
            The updated job, or None if no document matched
        """
        query: Dict[str, Any] = {"_id": job_id}
        if expected_status is not None:
            query["status"] = JobStatus(expected_status).value

        doc = await call_with_retry(
            lambda: self._jobs.find_one_and_update(
                query,
                {"$set": fields},
                return_document=ReturnDocument.AFTER
            ),
            f"{self.collection_name}.update_fields"
        )
        return self._to_job(doc) if doc else None
